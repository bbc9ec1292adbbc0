"""URL-keyed download cache and cache index builder."""

from __future__ import annotations

from .batch import BatchDownloader, BatchResult
from .config import CacheConfig
from .download import DownloadCache
from .errors import (
    CacheError,
    CorruptEntry,
    EntryNotFound,
    InvariantViolation,
    RedirectLoop,
    UnexpectedStatus,
)
from .ftp import FtpMirror
from .index import DirNode, FileNode, build_index, merge, normalize, scan, write_index
from .metadata import MetadataRecord
from .pages import CachedPages
from .paths import url_to_dirname
from .store import EntryStore, FileBodyStore, S3BodyStore
from .transport import HttpTransport

__all__ = [
    "BatchDownloader",
    "BatchResult",
    "CacheConfig",
    "CacheError",
    "CachedPages",
    "CorruptEntry",
    "DirNode",
    "DownloadCache",
    "EntryNotFound",
    "EntryStore",
    "FileBodyStore",
    "FileNode",
    "FtpMirror",
    "HttpTransport",
    "InvariantViolation",
    "MetadataRecord",
    "RedirectLoop",
    "S3BodyStore",
    "UnexpectedStatus",
    "build_index",
    "merge",
    "normalize",
    "scan",
    "url_to_dirname",
    "write_index",
]
