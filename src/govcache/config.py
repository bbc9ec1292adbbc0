"""Explicit configuration for the download cache."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping
from urllib.parse import urlsplit

import certifi

DEFAULT_STORAGE_ROOT = Path("data/cache")
DEFAULT_TIMEOUT = (15.0, 90.0)
DEFAULT_DOWNLOAD_DELAY = (1.0, 1.0)
DEFAULT_PUT_ARGS = {
    "CacheControl": "public, max-age=3600",
    "ServerSideEncryption": "AES256",
}
TRUST_BUNDLE_NAME = "ca-bundle.pem"


@dataclass(slots=True)
class CacheConfig:
    """Everything the cache needs to know about where and how to store entries."""

    storage_root: Path = DEFAULT_STORAGE_ROOT
    remote_endpoint: str | None = None
    s3_endpoint_url: str | None = None
    extra_trust_anchors: Path | None = None
    request_headers: dict[str, str] = field(default_factory=dict)
    download_delay_range: tuple[float, float] = DEFAULT_DOWNLOAD_DELAY
    timeout: tuple[float, float] = DEFAULT_TIMEOUT
    put_args: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PUT_ARGS))

    def __post_init__(self) -> None:
        self.storage_root = Path(self.storage_root)
        if self.extra_trust_anchors is not None:
            self.extra_trust_anchors = Path(self.extra_trust_anchors)
        if self.remote_endpoint is not None:
            parse_remote_endpoint(self.remote_endpoint)

    @property
    def remote_bucket(self) -> tuple[str, str] | None:
        """``(bucket, prefix)`` of the remote body store, if one is configured."""

        if not self.remote_endpoint:
            return None
        return parse_remote_endpoint(self.remote_endpoint)

    @classmethod
    def from_env(cls, prefix: str = "GOVCACHE_", environ: Mapping[str, str] | None = None) -> "CacheConfig":
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        if env.get(f"{prefix}STORAGE_ROOT"):
            kwargs["storage_root"] = Path(env[f"{prefix}STORAGE_ROOT"])
        if env.get(f"{prefix}REMOTE_ENDPOINT"):
            kwargs["remote_endpoint"] = env[f"{prefix}REMOTE_ENDPOINT"]
        if env.get(f"{prefix}S3_ENDPOINT_URL"):
            kwargs["s3_endpoint_url"] = env[f"{prefix}S3_ENDPOINT_URL"]
        if env.get(f"{prefix}EXTRA_TRUST_ANCHORS"):
            kwargs["extra_trust_anchors"] = Path(env[f"{prefix}EXTRA_TRUST_ANCHORS"])
        if env.get(f"{prefix}USER_AGENT"):
            kwargs["request_headers"] = {"User-Agent": env[f"{prefix}USER_AGENT"]}
        delay = env.get(f"{prefix}DOWNLOAD_DELAY")
        if delay:
            try:
                seconds = float(delay)
            except ValueError as exc:
                raise ValueError(f"{prefix}DOWNLOAD_DELAY must be a number, got {delay!r}") from exc
            kwargs["download_delay_range"] = (seconds, seconds)
        return cls(**kwargs)  # type: ignore[arg-type]

    def trust_bundle(self) -> str | bool:
        """Return the ``verify`` argument for HTTPS requests.

        Without extra anchors this is simply ``True``. Otherwise certifi's
        bundle and every ``*.pem`` under ``extra_trust_anchors`` are written to
        one file beneath the storage root, so servers that omit intermediate
        certificates can still be verified.
        """

        if self.extra_trust_anchors is None:
            return True
        anchors = self.extra_trust_anchors
        if anchors.is_dir():
            pem_files = sorted(anchors.glob("*.pem"))
        else:
            pem_files = [anchors]
        if not pem_files:
            return True

        fragments = [Path(certifi.where()).read_text(encoding="utf-8")]
        for pem in pem_files:
            fragments.append(pem.read_text(encoding="utf-8"))
        bundle = self.storage_root / TRUST_BUNDLE_NAME
        bundle.parent.mkdir(parents=True, exist_ok=True)
        bundle.write_text("\n".join(fragment.strip() for fragment in fragments) + "\n", encoding="utf-8")
        return str(bundle)


def parse_remote_endpoint(endpoint: str) -> tuple[str, str]:
    """Split ``s3://bucket/prefix`` into ``("bucket", "prefix/")``."""

    parsed = urlsplit(endpoint)
    if parsed.scheme != "s3" or not parsed.netloc:
        raise ValueError(f"Remote endpoint must look like s3://bucket[/prefix], got {endpoint!r}")
    prefix = parsed.path.strip("/")
    return parsed.netloc, f"{prefix}/" if prefix else ""


__all__ = ["CacheConfig", "DEFAULT_PUT_ARGS", "parse_remote_endpoint"]
