"""Hashing helpers for artifact digests, tree manifests, and stage fingerprints."""

from __future__ import annotations

import hashlib
import json
import os
import stat
from pathlib import Path
from typing import Any

_CHUNK = 1024 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Deterministic JSON bytes: sorted keys, compact separators, ASCII."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Stream a file through SHA-256 and return the hex digest."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(path: Path) -> str:
    """Return ``sha256:<hex>`` for a file on disk."""
    return f"sha256:{sha256_file(path)}"


def fingerprint(stage_id: str, payload: dict[str, Any]) -> str:
    """SHA-256 of canonical(stage_id + payload), used to fingerprint stage results."""
    return sha256_hex(canonical_json_bytes({"stage_id": stage_id, "payload": payload}))


def tree_manifest(root: Path, *, exclude: tuple[str, ...] = ()) -> dict[str, str]:
    """Map every regular file under *root* to its SHA-256.

    Keys are POSIX paths relative to *root*. Symlinks are not followed and
    are not included. Top-level names in *exclude* are skipped entirely.
    """
    manifest: dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root)
        if rel_dir == Path("."):
            dirnames[:] = [d for d in dirnames if d not in exclude]
        for name in filenames:
            full = Path(dirpath) / name
            rel = (rel_dir / name).as_posix()
            if rel_dir == Path(".") and name in exclude:
                continue
            if stat.S_ISREG(full.lstat().st_mode):
                manifest[rel] = sha256_file(full)
    return manifest
