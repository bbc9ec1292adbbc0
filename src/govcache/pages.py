"""Read cached pages for scrapers."""

from __future__ import annotations

from typing import Iterable, Mapping
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .download import DownloadCache


class CachedPages:
    """Fetch pages through the cache and hand them over as text or soup."""

    def __init__(self, cache: DownloadCache, headers: Mapping[str, str] | None = None) -> None:
        self.cache = cache
        self.headers = dict(headers or {})

    def text(self, url: str, encoding: str = "utf-8") -> str:
        return self.cache.download_bytes(url, self.headers).decode(encoding, errors="replace")

    def soup(self, url: str) -> BeautifulSoup:
        return BeautifulSoup(self.text(url), "html.parser")

    def links(self, url: str, suffixes: Iterable[str] | None = None, selector: str = "a[href]") -> list[str]:
        """Return absolute, de-duplicated link targets found on *url*.

        With *suffixes*, only links whose path ends in one of them (case
        insensitive) are kept.
        """

        wanted = tuple(suffix.lower() for suffix in suffixes) if suffixes else None
        links: list[str] = []
        for anchor in self.soup(url).select(selector):
            href = (anchor.get("href") or "").strip()
            if not href or href.startswith(("#", "mailto:", "javascript:")):
                continue
            absolute = urljoin(url, href).split("#", 1)[0]
            if wanted and not absolute.lower().split("?", 1)[0].endswith(wanted):
                continue
            if absolute not in links:
                links.append(absolute)
        return links

    def ensure(self, url: str) -> None:
        self.cache.ensure_in_cache(url, self.headers)


__all__ = ["CachedPages"]
