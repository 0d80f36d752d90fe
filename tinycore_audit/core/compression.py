"""Outer compression layer of an initrd archive.

Detection is by magic bytes. Decompression and recompression use the
standard-library codecs so the repacked image carries the same outer
compression as the one that was downloaded.
"""

from __future__ import annotations

import gzip
import lzma
import shutil
from enum import Enum
from pathlib import Path

from tinycore_audit.core.errors import UnpackError

_NEWC_MAGICS = (b"070701", b"070702")


class Compression(str, Enum):
    GZIP = "gzip"
    XZ = "xz"
    NONE = "none"


def detect(path: Path) -> Compression:
    """Identify the outer compression of *path*.

    Raises ``UnpackError`` when the header is neither a known compressor
    nor a bare newc stream.
    """
    with open(path, "rb") as fh:
        head = fh.read(6)
    if head[:2] == b"\x1f\x8b":
        return Compression.GZIP
    if head == b"\xfd7zXZ\x00":
        return Compression.XZ
    if head in _NEWC_MAGICS:
        return Compression.NONE
    raise UnpackError(f"{path} is not a gzip, xz, or newc archive (header {head!r})")


def _open_reader(path: Path, compression: Compression):
    if compression is Compression.GZIP:
        return gzip.open(path, "rb")
    if compression is Compression.XZ:
        return lzma.open(path, "rb")
    return open(path, "rb")


def _open_writer(path: Path, compression: Compression):
    if compression is Compression.GZIP:
        return gzip.open(path, "wb", compresslevel=9)
    if compression is Compression.XZ:
        # The kernel's xz decoder only understands CRC32 checks.
        return lzma.open(path, "wb", check=lzma.CHECK_CRC32)
    return open(path, "wb")


def decompress(src: Path, dest: Path, compression: Compression) -> Path:
    """Write the raw archive stream of *src* to *dest*."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        with _open_reader(src, compression) as reader, open(dest, "wb") as writer:
            shutil.copyfileobj(reader, writer)
    except (OSError, EOFError, lzma.LZMAError) as exc:
        raise UnpackError(f"Decompressing {src} ({compression.value}) failed: {exc}") from exc
    return dest


def compress(src: Path, dest: Path, compression: Compression) -> Path:
    """Compress the raw stream *src* into *dest*. Codec errors propagate."""
    with open(src, "rb") as reader, _open_writer(dest, compression) as writer:
        shutil.copyfileobj(reader, writer)
    return dest
