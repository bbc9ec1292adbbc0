"""Metadata records: the file whose presence marks a cache entry as complete.

A record is plain text made of four sections separated by a blank line
(``CRLF CRLF``)::

    GET https://example.org/data.csv

    > User-Agent: govcache

    < Status 200 OK
    < Content-Type: text/csv

    wrote body.csv

Redirect hops carry a ``Location`` response header and end in
``wrote no content``.
"""

from __future__ import annotations

import mimetypes
import re
from dataclasses import dataclass, field
from email.message import Message
from typing import Iterable, Mapping
from urllib.parse import urljoin, urlsplit

from .errors import CorruptEntry

SECTION_SEPARATOR = "\r\n\r\n"
LINE_SEPARATOR = "\r\n"
NO_BODY_MARKER = "no content"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
BODY_BASENAME = "body"
STATUS_PATTERN = re.compile(r"^(\d{3})(?: (.*))?$")
STATUS_KEY = "\x00status"
TRAILER_PATTERN = re.compile(r"^wrote (.*)$", re.MULTILINE)
PATH_EXT_PATTERN = re.compile(r"(\.\w{1,4})$")


@dataclass(slots=True)
class MetadataRecord:
    """Request and response headers of one download, plus what was stored."""

    url: str
    request_headers: list[tuple[str, str]] = field(default_factory=list)
    status_code: int | None = None
    status_message: str = ""
    response_headers: list[tuple[str, str]] = field(default_factory=list)
    body_filename: str | None = None

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.response_headers:
            if key.lower() == lowered:
                return value
        return None

    @property
    def location(self) -> str | None:
        """Absolute redirect target, or ``None`` if this record holds a body."""

        if self.body_filename is not None:
            return None
        location = self.header("Location")
        if not location:
            return None
        return urljoin(self.url, location.strip())

    @property
    def content_type(self) -> str:
        value = self.header("Content-Type")
        return value.strip() if value and value.strip() else DEFAULT_CONTENT_TYPE

    def render(self) -> str:
        request_lines = [f"> {key}: {value}" for key, value in self.request_headers]
        response_lines: list[str] = []
        if self.status_code is not None:
            status = f"< Status {self.status_code}"
            if self.status_message:
                status = f"{status} {self.status_message}"
            response_lines.append(status)
        response_lines.extend(f"< {key}: {value}" for key, value in self.response_headers)
        trailer = self.body_filename if self.body_filename is not None else NO_BODY_MARKER
        return SECTION_SEPARATOR.join(
            [
                f"GET {self.url}",
                LINE_SEPARATOR.join(request_lines),
                LINE_SEPARATOR.join(response_lines),
                f"wrote {trailer}",
            ]
        )

    @classmethod
    def parse(cls, text: str, *, source: str = "metadata") -> "MetadataRecord":
        sections = text.split(SECTION_SEPARATOR, 3)
        if len(sections) != 4:
            raise CorruptEntry(f"{source} has {len(sections)} sections, expected 4")
        request_line, request_section, response_section, trailer = sections

        if not request_line.startswith("GET "):
            raise CorruptEntry(f"{source} does not start with a GET request line")
        url = request_line[4:].strip()

        match = TRAILER_PATTERN.search(trailer)
        if not match:
            raise CorruptEntry(f"{source} does not specify the filename it wrote")
        written = match.group(1).strip()
        if written == NO_BODY_MARKER:
            body_filename = None
        elif written.startswith(BODY_BASENAME) and "/" not in written:
            body_filename = written
        else:
            raise CorruptEntry(f"{source} names an unexpected body file {written!r}")

        record = cls(url=url, body_filename=body_filename)
        record.request_headers = list(_parse_header_lines(request_section, ">", source))
        for key, value in _parse_header_lines(response_section, "<", source):
            if key != STATUS_KEY:
                record.response_headers.append((key, value))
                continue
            status = STATUS_PATTERN.match(value)
            if status is None or record.status_code is not None:
                raise CorruptEntry(f"{source} has a malformed status line {value!r}")
            record.status_code = int(status.group(1))
            record.status_message = status.group(2) or ""
        return record


def _parse_header_lines(section: str, prefix: str, source: str) -> Iterable[tuple[str, str]]:
    for line in section.split(LINE_SEPARATOR):
        if not line.strip():
            continue
        if not line.startswith(f"{prefix} "):
            raise CorruptEntry(f"{source} has a malformed header line {line!r}")
        content = line[2:]
        if prefix == "<" and content.startswith("Status "):
            yield STATUS_KEY, content[len("Status ") :].strip()
            continue
        key, sep, value = content.partition(":")
        if not sep:
            raise CorruptEntry(f"{source} has a header line without a colon: {line!r}")
        yield key.strip(), value.strip()


def path_to_ext(path: str | None) -> str:
    if not path:
        return ""
    match = PATH_EXT_PATTERN.search(path)
    return match.group(1) if match else ""


def content_disposition_to_ext(value: str | None) -> str:
    if not value:
        return ""
    message = Message()
    message["Content-Disposition"] = value
    return path_to_ext(message.get_filename())


def content_type_to_ext(value: str | None) -> str:
    if not value:
        return ""
    mime = value.split(";", 1)[0].strip().lower()
    if not mime:
        return ""
    ext = mimetypes.guess_extension(mime)
    if ext is None or ext == ".bin":
        return ""
    return ext


def body_extension(url: str, headers: Mapping[str, str]) -> str:
    """Pick the body file extension.

    Content-Disposition filename first, then the Content-Type, then the URL
    path; an unknown or generic content type never wins.
    """

    return (
        content_disposition_to_ext(headers.get("Content-Disposition"))
        or content_type_to_ext(headers.get("Content-Type"))
        or path_to_ext(urlsplit(url).path)
        or ""
    )


def body_basename(url: str, headers: Mapping[str, str]) -> str:
    return f"{BODY_BASENAME}{body_extension(url, headers)}"


__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "MetadataRecord",
    "NO_BODY_MARKER",
    "body_basename",
    "body_extension",
    "content_disposition_to_ext",
    "content_type_to_ext",
    "path_to_ext",
]
