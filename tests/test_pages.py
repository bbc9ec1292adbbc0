from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from requests.structures import CaseInsensitiveDict

from govcache.config import CacheConfig
from govcache.download import DownloadCache
from govcache.pages import CachedPages

LISTING_HTML = b"""
<html>
  <body>
    <table>
      <tr><td><a href="/reports/2016-01.pdf">January</a></td></tr>
      <tr><td><a href="reports/2016-02.PDF#page=2">February</a></td></tr>
      <tr><td><a href="/reports/2016-01.pdf">January (again)</a></td></tr>
      <tr><td><a href="https://other.example.gov/data.csv">Data</a></td></tr>
      <tr><td><a href="#top">Top</a></td></tr>
      <tr><td><a href="mailto:oig@example.gov">Contact</a></td></tr>
    </table>
  </body>
</html>
"""


class _Response:
    status_code = 200
    reason = "OK"

    def __init__(self, body: bytes) -> None:
        self.headers = CaseInsensitiveDict({"Content-Type": "text/html; charset=utf-8"})
        self.body = body

    def __enter__(self) -> "_Response":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        return None

    def iter_content(self, chunk_size: int = 65536):
        yield self.body


class _Session:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def get(self, url, headers=None, stream=False, allow_redirects=True, timeout=None):
        self.calls.append(url)
        return _Response(LISTING_HTML)

    def close(self) -> None:
        return None


class CachedPagesTest(unittest.TestCase):
    page_url = "https://www.example.gov/oig/reports"

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.session = _Session()
        self.cache = DownloadCache(
            CacheConfig(storage_root=Path(self._tmp.name)),
            client=self.session,
            download_delay_range=(0, 0),
        )
        self.pages = CachedPages(self.cache, {"User-Agent": "govcache scraper"})

    def tearDown(self) -> None:
        self.cache.close()
        self._tmp.cleanup()

    def test_links_are_absolute_and_unique(self) -> None:
        links = self.pages.links(self.page_url)
        self.assertEqual(
            links,
            [
                "https://www.example.gov/reports/2016-01.pdf",
                "https://www.example.gov/oig/reports/2016-02.PDF",
                "https://other.example.gov/data.csv",
            ],
        )

    def test_links_filtered_by_suffix(self) -> None:
        links = self.pages.links(self.page_url, suffixes=[".pdf"])
        self.assertEqual(
            links,
            [
                "https://www.example.gov/reports/2016-01.pdf",
                "https://www.example.gov/oig/reports/2016-02.PDF",
            ],
        )

    def test_pages_are_fetched_once(self) -> None:
        self.pages.ensure(self.page_url)
        self.assertIn("January", self.pages.text(self.page_url))
        self.assertEqual(self.pages.soup(self.page_url).find("a").get_text(), "January")
        self.assertEqual(self.session.calls, [self.page_url])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
