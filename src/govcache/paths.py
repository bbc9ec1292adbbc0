"""Map URLs to filesystem-safe cache keys."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

# Control characters, characters Windows refuses in file names, and "%" so
# that an already-escaped name never collides with its unescaped form.
UNSAFE_CHARACTERS = re.compile(r'[\x00-\x1f<>:"/\\|?*%]')


def _escape(match: re.Match[str]) -> str:
    return f"%{ord(match.group(0)):02X}"


def make_segment_safe(name: str) -> str:
    return UNSAFE_CHARACTERS.sub(_escape, name)


def url_to_segments(url: str) -> list[str]:
    """Return the escaped ``[scheme, host, *path]`` segments for *url*.

    The fragment is ignored; the query string stays attached to the last path
    segment (its ``?`` is escaped like any other unsafe character).
    """

    parsed = urlsplit(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Cannot derive a cache key from {url!r}: scheme and host are required")
    path = parsed.path
    if parsed.query:
        path = f"{path}?{parsed.query}"
    parts = [parsed.scheme.lower(), parsed.netloc]
    parts.extend(part for part in path.split("/") if part)
    return [make_segment_safe(part) for part in parts]


def url_to_dirname(url: str) -> str:
    """Return the cache key of *url*, e.g. ``http/example.org/foo``."""

    return "/".join(url_to_segments(url))


__all__ = ["make_segment_safe", "url_to_dirname", "url_to_segments"]
