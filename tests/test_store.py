from __future__ import annotations

import io
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from govcache.config import CacheConfig
from govcache.errors import EntryNotFound
from govcache.metadata import MetadataRecord
from govcache.store import ChunkReader, EntryStore, FileBodyStore, S3BodyStore


def _failing_chunks():
    yield b"partial"
    raise OSError("disk full")


class EntryStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store = EntryStore(self.root)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_metadata_is_not_found(self) -> None:
        self.assertFalse(self.store.exists("http/example.org/a"))
        with self.assertRaises(EntryNotFound):
            self.store.read_metadata("http/example.org/a")

    def test_body_and_metadata_live_side_by_side(self) -> None:
        key = "https/example.org/files/data.csv"
        self.store.write_body(key, "body.csv", [b"a,", b"b\n"])
        self.store.write_metadata(key, MetadataRecord(url="https://example.org/files/data.csv", body_filename="body.csv"))

        entry = self.root / "https" / "example.org" / "files" / "data.csv"
        self.assertEqual((entry / "body.csv").read_bytes(), b"a,b\n")
        self.assertTrue(self.store.exists(key))
        self.assertEqual(self.store.read_metadata(key).body_filename, "body.csv")
        with self.store.open_body(key, "body.csv") as handle:
            self.assertEqual(handle.read(), b"a,b\n")

    def test_metadata_record_reads_back_unchanged(self) -> None:
        key = "http/example.org/page"
        record = MetadataRecord(
            url="http://example.org/page",
            request_headers=[("User-Agent", "govcache")],
            status_code=200,
            status_message="OK",
            response_headers=[("Content-Type", "text/html; charset=utf-8"), ("X-Title", "Løvtidend")],
            body_filename="body.html",
        )
        self.store.write_metadata(key, record)

        raw = self.store.metadata_path(key).read_bytes()
        self.assertEqual(raw.count(b"\r\n\r\n"), 3)
        self.assertEqual(self.store.read_metadata(key), record)

    def test_body_size_comes_from_the_body_file(self) -> None:
        key = "https/example.org/files/data.csv"
        self.store.write_body(key, "body.csv", [b"a,b\n", b"1,2\n"])

        self.assertEqual(self.store.body_size(key, "body.csv"), 8)
        with self.assertRaises(EntryNotFound):
            self.store.body_size(key, "body.txt")

    def test_failed_body_write_leaves_nothing_behind(self) -> None:
        key = "http/example.org/big"
        with self.assertRaises(OSError):
            self.store.write_body(key, "body.zip", _failing_chunks())

        entry = self.root / "http" / "example.org" / "big"
        self.assertEqual(list(entry.iterdir()), [])
        with self.assertRaises(EntryNotFound):
            self.store.open_body(key, "body.zip")

    def test_from_config_picks_body_backend(self) -> None:
        local = EntryStore.from_config(CacheConfig(storage_root=self.root))
        self.assertIsInstance(local.bodies, FileBodyStore)

        remote = EntryStore.from_config(
            CacheConfig(storage_root=self.root, remote_endpoint="s3://datasets-bucket/mirror"),
            s3_client=MagicMock(),
        )
        self.assertIsInstance(remote.bodies, S3BodyStore)
        self.assertEqual(remote.bodies.bucket, "datasets-bucket")
        self.assertEqual(remote.bodies.prefix, "mirror/")


class S3BodyStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.extra_args: dict[str, dict[str, str]] = {}
        self.client = MagicMock()

        def upload_fileobj(fileobj, bucket, key, ExtraArgs=None):
            self.assertEqual(bucket, "datasets-bucket")
            self.objects[key] = fileobj.read()
            self.extra_args[key] = dict(ExtraArgs or {})

        def get_object(Bucket, Key):
            if Key not in self.objects:
                raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
            return {"Body": io.BytesIO(self.objects[Key])}

        def head_object(Bucket, Key):
            if Key not in self.objects:
                raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
            return {"ContentLength": len(self.objects[Key])}

        self.client.upload_fileobj.side_effect = upload_fileobj
        self.client.get_object.side_effect = get_object
        self.client.head_object.side_effect = head_object
        self.bodies = S3BodyStore(
            "datasets-bucket",
            "mirror",
            client=self.client,
            put_args={"CacheControl": "public, max-age=3600"},
        )

    def test_put_streams_under_prefixed_key(self) -> None:
        self.bodies.put(
            "https/example.org/a.zip",
            "body.zip",
            iter([b"PK", b"\x03\x04"]),
            content_type="application/zip",
            content_disposition='attachment; filename="a.zip"',
        )

        key = "mirror/https/example.org/a.zip/body.zip"
        self.assertEqual(self.objects[key], b"PK\x03\x04")
        self.assertEqual(
            self.extra_args[key],
            {
                "CacheControl": "public, max-age=3600",
                "ContentType": "application/zip",
                "ContentDisposition": 'attachment; filename="a.zip"',
            },
        )
        self.assertEqual(self.bodies.open("https/example.org/a.zip", "body.zip").read(), b"PK\x03\x04")

    def test_size_reads_object_head(self) -> None:
        self.bodies.put("https/example.org/a.zip", "body.zip", iter([b"PK", b"\x03\x04"]))

        self.assertEqual(self.bodies.size("https/example.org/a.zip", "body.zip"), 4)
        self.client.head_object.assert_called_with(
            Bucket="datasets-bucket", Key="mirror/https/example.org/a.zip/body.zip"
        )
        with self.assertRaises(EntryNotFound):
            self.bodies.size("https/example.org/none", "body")

    def test_missing_object_is_not_found(self) -> None:
        with self.assertRaises(EntryNotFound):
            self.bodies.open("https/example.org/none", "body")

    def test_other_client_errors_propagate(self) -> None:
        self.client.get_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject"
        )
        with self.assertRaises(ClientError):
            self.bodies.open("https/example.org/secret", "body")


class ChunkReaderTest(unittest.TestCase):
    def test_reads_across_chunk_boundaries(self) -> None:
        reader = ChunkReader(iter([b"abc", b"", b"defg"]))
        self.assertEqual(reader.read(2), b"ab")
        self.assertEqual(reader.read(3), b"cde")
        self.assertEqual(reader.read(), b"fg")
        self.assertEqual(reader.read(), b"")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
