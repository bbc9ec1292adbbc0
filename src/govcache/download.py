"""URL-keyed download cache.

An entry counts as cached once its metadata record exists. Bodies are always
written before the metadata record that names them, and a redirect target is
committed before the record pointing at it, so an interrupted download reads
back as a miss and is simply fetched again next time.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from contextlib import closing, contextmanager
from typing import Any, BinaryIO, Iterator, Mapping
from urllib.parse import urljoin

from requests import Response, Session

from .config import CacheConfig
from .errors import CorruptEntry, EntryNotFound, InvariantViolation, RedirectLoop, UnexpectedStatus
from .metadata import MetadataRecord, body_basename
from .paths import url_to_dirname
from .store import METADATA_NAME, EntryStore
from .transport import HttpTransport, iter_body

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302}


class DownloadCache:
    """Download URLs at most once and serve them from the cache afterwards."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        store: EntryStore | None = None,
        transport: HttpTransport | None = None,
        client: Session | None = None,
        s3_client: Any | None = None,
        download_delay_range: tuple[float, float] | None = None,
    ) -> None:
        self.config = config or CacheConfig()
        self.store = store or EntryStore.from_config(self.config, s3_client=s3_client)
        self._transport_owner = transport is None
        self.transport = transport or HttpTransport(self.config, client=client)
        if download_delay_range is None:
            download_delay_range = self.config.download_delay_range
        self._download_delay_range = download_delay_range
        self._locks: dict[str, tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    def __enter__(self) -> "DownloadCache":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        if self._transport_owner:
            self.transport.close()

    def key_for(self, url: str) -> str:
        return url_to_dirname(url)

    def quick_check(self, url: str) -> bool:
        """Return ``True`` when *url* has a committed metadata record.

        The body is not inspected, and redirect targets are not followed.
        """

        return self.store.exists(self.key_for(url))

    def resolve_stream(self, url: str) -> BinaryIO | None:
        """Open the cached body of *url*, following cached redirects.

        Returns ``None`` on a cache miss. The caller owns the returned stream.
        """

        chain = [url]
        seen = {self.key_for(url)}
        current = url
        while True:
            key = self.key_for(current)
            try:
                record = self.store.read_metadata(key)
            except EntryNotFound:
                logger.debug("cache miss %s", current)
                return None

            target = record.location
            if target is not None:
                chain.append(target)
                target_key = self.key_for(target)
                if target_key in seen:
                    raise RedirectLoop(chain)
                seen.add(target_key)
                current = target
                continue

            if record.body_filename is None:
                raise CorruptEntry(f"{key}/{METADATA_NAME} does not specify the filename it wrote")
            try:
                return self.store.open_body(key, record.body_filename)
            except EntryNotFound as exc:
                raise CorruptEntry(
                    f"{key}/{METADATA_NAME} refers to {record.body_filename}, which is missing"
                ) from exc

    def force_download(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        *,
        _chain: tuple[str, ...] = (),
    ) -> None:
        """Fetch *url* and commit it, replacing whatever was cached before."""

        chain = (*_chain, url)
        key = self.key_for(url)
        if key in {self.key_for(previous) for previous in _chain}:
            raise RedirectLoop(list(chain))
        request_headers = self._request_headers(headers)

        target: str | None = None
        with self._key_lock(key):
            with self.transport.fetch(url, request_headers) as response:
                status = response.status_code
                location = response.headers.get("Location")
                if status in REDIRECT_STATUSES and location:
                    target = urljoin(url, location)
                    logger.debug("%d response => %s", status, target)
                    redirect_record = self._record(url, request_headers, response, None)
                elif status != 200:
                    raise UnexpectedStatus(url, status)
                else:
                    basename = body_basename(url, response.headers)
                    self.store.write_body(
                        key,
                        basename,
                        iter_body(response, url),
                        content_type=response.headers.get("Content-Type"),
                        content_disposition=response.headers.get("Content-Disposition"),
                    )
                    self.store.write_metadata(key, self._record(url, request_headers, response, basename))

        if target is None:
            self._sleep_download_delay()
            return

        # The target is committed first: a crash before the pointer below is
        # written leaves this URL a plain miss instead of a dangling hit.
        self.force_download(target, headers, _chain=chain)
        with self._key_lock(key):
            self.store.write_metadata(key, redirect_record)

    def ensure_in_cache(self, url: str, headers: Mapping[str, str] | None = None) -> None:
        """Download *url* unless its metadata record already exists."""

        logger.debug("cache-check %s", url)
        if self.quick_check(url):
            return
        self.force_download(url, headers)

    def ensure_in_cache_verified(self, url: str, headers: Mapping[str, str] | None = None) -> None:
        """Like :meth:`ensure_in_cache`, but a hit must resolve to an openable body."""

        stream = self.resolve_stream(url)
        if stream is not None:
            stream.close()
            return
        self.force_download(url, headers)

    def ensure_in_cache_then_stream(self, url: str, headers: Mapping[str, str] | None = None) -> BinaryIO:
        """Return the cached body of *url*, downloading it first on a miss."""

        logger.debug("cache-lookup %s", url)
        stream = self.resolve_stream(url)
        if stream is not None:
            return stream

        self.force_download(url, headers)
        stream = self.resolve_stream(url)
        if stream is None:
            raise InvariantViolation(
                f"force_download() of {url} finished without error but the entry is still missing"
            )
        return stream

    def download_bytes(self, url: str, headers: Mapping[str, str] | None = None) -> bytes:
        with closing(self.ensure_in_cache_then_stream(url, headers)) as stream:
            return stream.read()

    def _record(
        self,
        url: str,
        request_headers: Mapping[str, str],
        response: Response,
        basename: str | None,
    ) -> MetadataRecord:
        return MetadataRecord(
            url=url,
            request_headers=list(request_headers.items()),
            status_code=response.status_code,
            status_message=response.reason or "",
            response_headers=list(response.headers.items()),
            body_filename=basename,
        )

    def _request_headers(self, headers: Mapping[str, str] | None) -> dict[str, str]:
        merged = dict(self.config.request_headers)
        if headers:
            merged.update(headers)
        return merged

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[threading.Lock]:
        """Hold the commit lock of *key*; it is dropped once nobody waits on it."""

        with self._locks_guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)
        try:
            with lock:
                yield lock
        finally:
            with self._locks_guard:
                _, users = self._locks[key]
                if users == 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def _sleep_download_delay(self) -> None:
        if not self._download_delay_range:
            return
        lower, upper = self._download_delay_range
        wait = random.uniform(lower, upper) if upper > lower else lower
        if wait > 0:
            time.sleep(wait)


__all__ = ["DownloadCache"]
