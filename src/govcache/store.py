"""Durable storage of cache entries.

Each entry is a directory named by its cache key that holds a ``metadata``
record and, next to it, a ``body<ext>`` file. Bodies may instead live in an
S3 bucket under the same key; metadata records always stay on the local
filesystem. The store does not order writes: callers commit the body before
the metadata record.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, BinaryIO, Iterable, Iterator, Protocol

import boto3
from botocore.exceptions import ClientError

from .config import CacheConfig
from .errors import EntryNotFound
from .metadata import MetadataRecord

logger = logging.getLogger(__name__)

METADATA_NAME = "metadata"
PARTIAL_SUFFIX = ".part"
MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


class BodyStore(Protocol):
    def put(
        self,
        key: str,
        basename: str,
        chunks: Iterable[bytes],
        *,
        content_type: str | None = None,
        content_disposition: str | None = None,
    ) -> None: ...

    def open(self, key: str, basename: str) -> BinaryIO: ...

    def size(self, key: str, basename: str) -> int: ...


def _write_atomically(destination: Path, chunks: Iterable[bytes]) -> int:
    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_path = destination.with_name(destination.name + PARTIAL_SUFFIX)
    written = 0
    try:
        with temp_path.open("wb") as handle:
            for chunk in chunks:
                handle.write(chunk)
                written += len(chunk)
        temp_path.replace(destination)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise
    return written


class FileBodyStore:
    """Keep bodies in the local cache tree beside their metadata records."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path(self, key: str, basename: str) -> Path:
        return self.root.joinpath(*key.split("/"), basename)

    def put(
        self,
        key: str,
        basename: str,
        chunks: Iterable[bytes],
        *,
        content_type: str | None = None,
        content_disposition: str | None = None,
    ) -> None:
        destination = self.path(key, basename)
        size = _write_atomically(destination, chunks)
        logger.debug("Wrote %d bytes to %s", size, destination)

    def open(self, key: str, basename: str) -> BinaryIO:
        try:
            return self.path(key, basename).open("rb")
        except FileNotFoundError as exc:
            raise EntryNotFound(f"{key}/{basename}") from exc

    def size(self, key: str, basename: str) -> int:
        try:
            return self.path(key, basename).stat().st_size
        except FileNotFoundError as exc:
            raise EntryNotFound(f"{key}/{basename}") from exc


class ChunkReader(io.RawIOBase):
    """File-like view over an iterator of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks: Iterator[bytes] = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        # Fill the whole buffer unless the iterator is exhausted: boto3 takes
        # a short read as the end of the stream.
        view = memoryview(buffer).cast("B")
        filled = 0
        while filled < len(view):
            if not self._pending:
                try:
                    self._pending = next(self._chunks)
                except StopIteration:
                    break
                continue
            size = min(len(view) - filled, len(self._pending))
            view[filled : filled + size] = self._pending[:size]
            self._pending = self._pending[size:]
            filled += size
        return filled


class S3BodyStore:
    """Stream bodies to an S3-compatible bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        *,
        client: Any | None = None,
        endpoint_url: str | None = None,
        put_args: dict[str, str] | None = None,
    ) -> None:
        if client is None:
            kwargs: dict[str, Any] = {}
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("s3", **kwargs)
        self._s3 = client
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/" if prefix else ""
        self.put_args = dict(put_args or {})

    def object_key(self, key: str, basename: str) -> str:
        return f"{self.prefix}{key}/{basename}"

    def put(
        self,
        key: str,
        basename: str,
        chunks: Iterable[bytes],
        *,
        content_type: str | None = None,
        content_disposition: str | None = None,
    ) -> None:
        object_key = self.object_key(key, basename)
        extra_args = dict(self.put_args)
        if content_type:
            extra_args["ContentType"] = content_type
        if content_disposition:
            extra_args["ContentDisposition"] = content_disposition
        logger.debug("Streaming to s3://%s/%s", self.bucket, object_key)
        self._s3.upload_fileobj(ChunkReader(chunks), self.bucket, object_key, ExtraArgs=extra_args)

    def open(self, key: str, basename: str) -> BinaryIO:
        object_key = self.object_key(key, basename)
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=object_key)
        except ClientError as exc:
            _raise_if_missing(exc, object_key)
            raise
        return response["Body"]

    def size(self, key: str, basename: str) -> int:
        object_key = self.object_key(key, basename)
        try:
            response = self._s3.head_object(Bucket=self.bucket, Key=object_key)
        except ClientError as exc:
            _raise_if_missing(exc, object_key)
            raise
        return int(response["ContentLength"])


def _raise_if_missing(exc: ClientError, object_key: str) -> None:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    if code in MISSING_OBJECT_CODES:
        raise EntryNotFound(object_key) from exc


class EntryStore:
    """Read and write cache entries addressed by cache key."""

    def __init__(self, root: Path, bodies: BodyStore | None = None) -> None:
        self.root = Path(root)
        self.bodies: BodyStore = bodies if bodies is not None else FileBodyStore(self.root)

    @classmethod
    def from_config(cls, config: CacheConfig, *, s3_client: Any | None = None) -> "EntryStore":
        remote = config.remote_bucket
        if remote is None:
            return cls(config.storage_root)
        bucket, prefix = remote
        bodies = S3BodyStore(
            bucket,
            prefix,
            client=s3_client,
            endpoint_url=config.s3_endpoint_url,
            put_args=config.put_args,
        )
        return cls(config.storage_root, bodies)

    def entry_dir(self, key: str) -> Path:
        return self.root.joinpath(*key.split("/"))

    def metadata_path(self, key: str) -> Path:
        return self.entry_dir(key) / METADATA_NAME

    def exists(self, key: str) -> bool:
        return self.metadata_path(key).is_file()

    def read_metadata(self, key: str) -> MetadataRecord:
        path = self.metadata_path(key)
        try:
            # Binary read keeps the CRLF section separators intact.
            text = path.read_bytes().decode("utf-8")
        except FileNotFoundError as exc:
            raise EntryNotFound(key) from exc
        return MetadataRecord.parse(text, source=f"{key}/{METADATA_NAME}")

    def write_body(
        self,
        key: str,
        basename: str,
        chunks: Iterable[bytes],
        *,
        content_type: str | None = None,
        content_disposition: str | None = None,
    ) -> None:
        self.bodies.put(
            key,
            basename,
            chunks,
            content_type=content_type,
            content_disposition=content_disposition,
        )

    def write_metadata(self, key: str, record: MetadataRecord) -> None:
        path = self.metadata_path(key)
        logger.debug("Dumping headers to %s", path)
        _write_atomically(path, [record.render().encode("utf-8")])

    def open_body(self, key: str, basename: str) -> BinaryIO:
        return self.bodies.open(key, basename)

    def body_size(self, key: str, basename: str) -> int:
        return self.bodies.size(key, basename)


__all__ = [
    "BodyStore",
    "ChunkReader",
    "EntryStore",
    "FileBodyStore",
    "METADATA_NAME",
    "S3BodyStore",
]
