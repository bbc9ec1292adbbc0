"""Mirror FTP directories into the cache.

FTP has no response headers, so each file gets a synthetic metadata record
whose only response header is a Content-Type guessed from the file name.
"""

from __future__ import annotations

import ftplib
import logging
import mimetypes
from typing import Any, Callable, Iterator
from urllib.parse import quote, unquote, urlsplit

from .metadata import DEFAULT_CONTENT_TYPE, MetadataRecord, path_to_ext
from .paths import url_to_dirname
from .store import EntryStore

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


def path_to_content_type(path: str) -> str:
    guessed, _encoding = mimetypes.guess_type(path)
    return guessed or DEFAULT_CONTENT_TYPE


class FtpMirror:
    """Copy every file below an FTP directory into the store, skipping committed ones."""

    def __init__(self, store: EntryStore, *, client_factory: Callable[..., Any] = ftplib.FTP) -> None:
        self.store = store
        self._client_factory = client_factory

    def mirror(self, root_url: str) -> list[str]:
        """Mirror *root_url* (``ftp://host/dir/``); return the URLs fetched this run."""

        parsed = urlsplit(root_url)
        if parsed.scheme != "ftp" or not parsed.hostname:
            raise ValueError(f"Expected an ftp:// URL, got {root_url!r}")
        root = unquote(parsed.path).strip("/")

        ftp = self._client_factory()
        try:
            ftp.connect(parsed.hostname, parsed.port or 21)
            ftp.login(parsed.username or "anonymous", parsed.password or "")
            fetched: list[str] = []
            for path in self._walk(ftp, root):
                # Remote names may hold "#" or "?", which must not end the URL path.
                url = f"ftp://{parsed.netloc}/{quote(path, safe='/')}"
                if self.store.exists(url_to_dirname(url)):
                    logger.debug("Already downloaded %s, skipping...", path)
                    continue
                self._download_file(ftp, url, path)
                fetched.append(url)
            return fetched
        finally:
            ftp.close()

    def _walk(self, ftp: Any, directory: str) -> Iterator[str]:
        logger.debug("listing directory %s", directory)
        for name, facts in ftp.mlsd(f"/{directory}"):
            kind = facts.get("type")
            path = f"{directory}/{name}" if directory else name
            if kind == "dir":
                yield from self._walk(ftp, path)
            elif kind == "file":
                yield path
            elif kind not in ("cdir", "pdir"):
                raise ftplib.Error(f"Unexpected entry type {kind!r} for {path}")

    def _download_file(self, ftp: Any, url: str, path: str) -> None:
        logger.debug("downloading file %s...", path)
        key = url_to_dirname(url)
        basename = f"body{path_to_ext(path)}"
        content_type = path_to_content_type(path)

        ftp.voidcmd("TYPE I")
        connection = ftp.transfercmd(f"RETR /{path}")
        try:
            with connection.makefile("rb") as stream:
                chunks = iter(lambda: stream.read(CHUNK_SIZE), b"")
                self.store.write_body(key, basename, chunks, content_type=content_type)
        finally:
            connection.close()
        ftp.voidresp()

        record = MetadataRecord(
            url=url,
            response_headers=[("Content-Type", content_type)],
            body_filename=basename,
        )
        self.store.write_metadata(key, record)


__all__ = ["FtpMirror", "path_to_content_type"]
