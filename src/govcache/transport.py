"""HTTP transport used by the download cache."""

from __future__ import annotations

import logging
from http.client import IncompleteRead
from typing import Iterator, Mapping

from requests import Response, Session
from requests.exceptions import ChunkedEncodingError, ContentDecodingError, RequestException
from urllib3.exceptions import DecodeError, ProtocolError

from .config import CacheConfig

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536
STREAM_ERRORS = (
    ChunkedEncodingError,
    ContentDecodingError,
    DecodeError,
    ProtocolError,
    IncompleteRead,
)


class HttpTransport:
    """Issue single GET requests without following redirects.

    Redirect hops are returned to the caller as-is so each hop can be cached
    under its own key.
    """

    def __init__(self, config: CacheConfig | None = None, *, client: Session | None = None) -> None:
        self.config = config or CacheConfig()
        self._session_owner = client is None
        self._session = client or self._build_session()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        if self._session_owner:
            self._session.close()

    def _build_session(self) -> Session:
        session = Session()
        session.headers.update(self.config.request_headers)
        session.verify = self.config.trust_bundle()
        return session

    def fetch(self, url: str, headers: Mapping[str, str]) -> Response:
        logger.debug("GET %s", url)
        return self._session.get(
            url,
            headers=dict(headers),
            stream=True,
            allow_redirects=False,
            timeout=self.config.timeout,
        )


def iter_body(response: Response, url: str) -> Iterator[bytes]:
    """Yield the non-empty chunks of *response*, reporting stream faults as network errors."""

    try:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if chunk:
                yield chunk
    except STREAM_ERRORS as exc:
        raise RequestException(f"Stream error while downloading {url}: {exc}") from exc


__all__ = ["HttpTransport", "iter_body"]
