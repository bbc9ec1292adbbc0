from __future__ import annotations

import unittest

from govcache.paths import url_to_dirname


class UrlToDirnameTest(unittest.TestCase):
    def test_chooses_the_right_dirname(self) -> None:
        self.assertEqual(url_to_dirname("http://example.org/foo"), "http/example.org/foo")

    def test_escapes_a_basename(self) -> None:
        self.assertEqual(url_to_dirname("http://t.co/foo/bar:baz"), "http/t.co/foo/bar%3Abaz")

    def test_escapes_a_percent_in_a_basename(self) -> None:
        self.assertEqual(url_to_dirname("http://t.co/foo/bar%3Abaz"), "http/t.co/foo/bar%253Abaz")

    def test_ignores_the_fragment(self) -> None:
        self.assertEqual(
            url_to_dirname("http://example.org/foo#details"),
            url_to_dirname("http://example.org/foo"),
        )

    def test_escapes_every_unsafe_character(self) -> None:
        self.assertEqual(
            url_to_dirname('http://t.co/a:b|c*d"e'),
            "http/t.co/a%3Ab%7Cc%2Ad%22e",
        )

    def test_keeps_query_string_on_last_segment(self) -> None:
        self.assertEqual(
            url_to_dirname("https://example.org/search?q=1&page=2"),
            "https/example.org/search%3Fq=1&page=2",
        )

    def test_host_port_and_empty_segments(self) -> None:
        self.assertEqual(url_to_dirname("http://example.org:8080//a///b/"), "http/example.org%3A8080/a/b")
        self.assertEqual(url_to_dirname("http://example.org/"), "http/example.org")

    def test_distinct_urls_do_not_collide(self) -> None:
        self.assertNotEqual(url_to_dirname("http://t.co/a%2Fb"), url_to_dirname("http://t.co/a/b"))
        self.assertNotEqual(url_to_dirname("http://t.co/x?y"), url_to_dirname("http://t.co/x%3Fy"))

    def test_rejects_urls_without_host(self) -> None:
        with self.assertRaises(ValueError):
            url_to_dirname("/relative/path")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
