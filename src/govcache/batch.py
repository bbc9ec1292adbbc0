"""Download a list of URLs into the cache, one at a time."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Mapping, Sequence

from botocore.exceptions import BotoCoreError, ClientError
from requests.exceptions import RequestException

from .checkpoint import (
    CheckpointError,
    describe_resume_point,
    load_checkpoint,
    save_checkpoint,
    url_list_fingerprint,
)
from .download import DownloadCache
from .errors import CacheError

logger = logging.getLogger(__name__)

# Errors that fail a single URL without ending the batch.
URL_ERRORS = (RequestException, CacheError, ValueError, OSError, BotoCoreError, ClientError)

ErrorPolicy = Literal["stop", "skip"]


@dataclass(slots=True)
class BatchResult:
    downloaded: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    interrupted: bool = False


class BatchDownloader:
    """Walk a URL list serially so the remote server is never hit in parallel.

    With ``on_error="stop"`` the first failure is re-raised after the
    checkpoint has been saved; with ``"skip"`` it is reported and the batch
    continues.
    """

    def __init__(
        self,
        cache: DownloadCache,
        *,
        headers: Mapping[str, str] | None = None,
        on_error: ErrorPolicy = "stop",
        quick: bool = True,
    ) -> None:
        if on_error not in ("stop", "skip"):
            raise ValueError(f"on_error must be 'stop' or 'skip', got {on_error!r}")
        self.cache = cache
        self.headers = dict(headers or {})
        self.on_error = on_error
        self.quick = quick

    def download(self, url: str, *, force: bool = False) -> bool:
        """Bring *url* into the cache; return ``True`` if it was fetched."""

        if force:
            self.cache.force_download(url, self.headers)
            return True
        if self.quick:
            if self.cache.quick_check(url):
                return False
        else:
            stream = self.cache.resolve_stream(url)
            if stream is not None:
                stream.close()
                return False
        self.cache.force_download(url, self.headers)
        return True

    def run(
        self,
        urls: Sequence[str],
        *,
        checkpoint_path: Path | None = None,
        no_resume: bool = False,
        force: bool = False,
    ) -> BatchResult:
        urls = list(urls)
        fingerprint = url_list_fingerprint(urls)
        result = BatchResult()
        start_index = 0

        if checkpoint_path is not None and not no_resume:
            try:
                state = load_checkpoint(checkpoint_path)
            except CheckpointError as exc:
                print(exc, file=sys.stderr)
                raise SystemExit(2)
            if state is not None and state.fingerprint == fingerprint:
                start_index = min(state.resume_index, len(urls))
                print(f"Resuming from {describe_resume_point(state)}", file=sys.stderr)
            elif state is not None:
                print(
                    f"Ignoring checkpoint {checkpoint_path}: it belongs to a different URL list.",
                    file=sys.stderr,
                )

        def checkpoint(resume_index: int | None) -> None:
            if checkpoint_path is None:
                return
            save_checkpoint(
                checkpoint_path,
                fingerprint=fingerprint,
                resume_index=resume_index,
                total_urls=len(urls),
                downloaded=len(result.downloaded),
                failed=len(result.failed),
            )

        index = start_index
        try:
            for index in range(start_index, len(urls)):
                url = urls[index]
                try:
                    fetched = self.download(url, force=force)
                except URL_ERRORS as exc:
                    result.failed.append((url, str(exc)))
                    if self.on_error == "stop":
                        checkpoint(index)
                        print(f"Failed to download {url}: {exc}", file=sys.stderr)
                        raise
                    print(f"Skipping {url}: {exc}", file=sys.stderr)
                else:
                    if fetched:
                        result.downloaded.append(url)
                    else:
                        logger.debug("Already cached %s", url)
                        result.cached.append(url)
                checkpoint(index + 1)
        except KeyboardInterrupt:
            result.interrupted = True
            checkpoint(index)
            print("\nInterrupted by user", file=sys.stderr)
            return result

        checkpoint(None)
        print(
            f"Finished. Downloaded {len(result.downloaded)}, already cached {len(result.cached)}, "
            f"failed {len(result.failed)}.",
            file=sys.stderr,
        )
        return result


__all__ = ["BatchDownloader", "BatchResult"]
