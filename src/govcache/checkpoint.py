"""Checkpoint helpers so a long URL batch can resume where it stopped."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable


class CheckpointError(RuntimeError):
    """Raised when a checkpoint file cannot be interpreted."""


@dataclass(slots=True)
class CheckpointState:
    fingerprint: str
    resume_index: int
    total_urls: int
    downloaded: int
    failed: int
    updated_at: str


def url_list_fingerprint(urls: Iterable[str]) -> str:
    digest = hashlib.sha1()
    for url in urls:
        digest.update(url.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


def load_checkpoint(path: Path) -> CheckpointState | None:
    """Return the checkpoint stored at *path*, if any."""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:  # pragma: no cover - user action needed
        raise CheckpointError(f"Checkpoint file {path} contains invalid JSON: {exc}") from exc
    if not isinstance(payload, dict) or not payload.get("fingerprint"):
        raise CheckpointError(f"Checkpoint file {path} does not describe a URL batch")

    try:
        parsed_index = int(payload.get("resume_index", 0))
    except (TypeError, ValueError):  # pragma: no cover - invalid user data
        parsed_index = 0
    if parsed_index < 0:
        parsed_index = 0

    return CheckpointState(
        fingerprint=payload["fingerprint"],
        resume_index=parsed_index,
        total_urls=int(payload.get("total_urls", 0)),
        downloaded=int(payload.get("downloaded", 0)),
        failed=int(payload.get("failed", 0)),
        updated_at=payload.get("updated_at", ""),
    )


def save_checkpoint(
    path: Path,
    *,
    fingerprint: str,
    resume_index: int | None,
    total_urls: int,
    downloaded: int,
    failed: int,
) -> None:
    """Persist the resume position; a ``None`` index means the batch finished."""

    if resume_index is None:
        if path.exists():
            path.unlink()
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = {
        "fingerprint": fingerprint,
        "resume_index": max(resume_index, 0),
        "total_urls": total_urls,
        "downloaded": downloaded,
        "failed": failed,
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "version": 1,
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def describe_resume_point(state: CheckpointState) -> str:
    """Return a human-readable description of where the batch will resume."""

    if not state.resume_index:
        return "beginning"
    return f"URL {state.resume_index + 1} of {state.total_urls}"


__all__ = [
    "CheckpointError",
    "CheckpointState",
    "describe_resume_point",
    "load_checkpoint",
    "save_checkpoint",
    "url_list_fingerprint",
]
