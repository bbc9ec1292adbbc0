"""Exceptions raised by the download cache.

Transport failures are not wrapped: they surface as
:class:`requests.RequestException` exactly as the HTTP client raised them.
"""

from __future__ import annotations


class CacheError(RuntimeError):
    """Base class for cache protocol failures."""


class EntryNotFound(CacheError):
    """Raised by the store when a metadata record or body is absent."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No cache entry at {key}")
        self.key = key


class UnexpectedStatus(CacheError):
    """Raised when a fetch ends in a status other than 200, 301 or 302."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"{url} returned status code {status_code}")
        self.url = url
        self.status_code = status_code


class CorruptEntry(CacheError):
    """Raised when a committed metadata record cannot be interpreted."""


class RedirectLoop(CacheError):
    """Raised when a redirect chain visits the same URL twice."""

    def __init__(self, chain: list[str]) -> None:
        super().__init__("Redirect loop: " + " -> ".join(chain))
        self.chain = chain


class InvariantViolation(CacheError):
    """Raised when a completed download still reads back as a cache miss."""


__all__ = [
    "CacheError",
    "CorruptEntry",
    "EntryNotFound",
    "InvariantViolation",
    "RedirectLoop",
    "UnexpectedStatus",
]
