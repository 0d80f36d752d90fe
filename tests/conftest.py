"""Shared test fixtures for tinycore-audit."""

from __future__ import annotations

import gzip
import lzma
import os
import stat
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path, PurePosixPath
from typing import ClassVar

import pytest

from tinycore_audit.core.extraction import ExtractionStrategy, normalize_entry
from tinycore_audit.models.config import PipelineConfig
from tinycore_audit.models.reports import ExtractionResult, ExtractionStatus

# ---------------------------------------------------------------------------
# newc archive helpers (test-only; the product shells out to cpio/bsdtar)
# ---------------------------------------------------------------------------

NEWC_MAGIC = b"070701"
TRAILER = "TRAILER!!!"
_HEADER_LEN = 110


def _pad(length: int) -> bytes:
    return b"\0" * ((4 - length % 4) % 4)


def build_newc(entries: Iterable[tuple[str, int, bytes, tuple[int, int]]]) -> bytes:
    """Serialize ``(name, mode, data, (rdevmajor, rdevminor))`` tuples as newc."""
    out = bytearray()
    records = [*entries, (TRAILER, 0, b"", (0, 0))]
    for ino, (name, mode, data, rdev) in enumerate(records, start=1):
        encoded = name.encode("utf-8") + b"\0"
        nlink = 2 if stat.S_ISDIR(mode) else 1
        fields = (
            ino if name != TRAILER else 0, mode, 0, 0, nlink, 0, len(data),
            0, 0, rdev[0], rdev[1], len(encoded), 0,
        )
        header = NEWC_MAGIC + b"".join(b"%08X" % f for f in fields)
        out += header + encoded + _pad(_HEADER_LEN + len(encoded))
        out += data + _pad(len(data))
    return bytes(out)


def read_newc(data: bytes) -> list[tuple[str, int, bytes]]:
    """Parse a newc stream into ``(name, mode, data)`` tuples, trailer excluded."""
    entries: list[tuple[str, int, bytes]] = []
    pos = 0
    while pos + _HEADER_LEN <= len(data):
        header = data[pos:pos + _HEADER_LEN]
        if header[:6] not in (b"070701", b"070702"):
            raise ValueError(f"bad newc magic at offset {pos}: {header[:6]!r}")
        fields = [int(header[6 + i * 8:14 + i * 8], 16) for i in range(13)]
        mode, filesize, namesize = fields[1], fields[6], fields[11]
        pos += _HEADER_LEN
        name = data[pos:pos + namesize - 1].decode("utf-8", errors="surrogateescape")
        pos += namesize + len(_pad(_HEADER_LEN + namesize))
        body = data[pos:pos + filesize]
        pos += filesize + len(_pad(filesize))
        if name == TRAILER:
            break
        entries.append((name, mode, body))
    return entries


def _compress(raw: bytes, compression: str) -> bytes:
    if compression == "gzip":
        return gzip.compress(raw)
    if compression == "xz":
        return lzma.compress(raw, check=lzma.CHECK_CRC32)
    return raw


def _decompress(blob: bytes) -> bytes:
    if blob[:2] == b"\x1f\x8b":
        return gzip.decompress(blob)
    if blob[:6] == b"\xfd7zXZ\x00":
        return lzma.decompress(blob)
    return blob


@pytest.fixture
def make_initrd() -> Callable[..., Path]:
    """Factory fixture: write a compressed newc archive and return its path.

    Parent directories of every entry are added automatically.
    """

    def _factory(
        path: Path,
        files: Mapping[str, bytes] | None = None,
        *,
        devices: Iterable[str] = (),
        symlinks: Mapping[str, str] | None = None,
        compression: str = "gzip",
    ) -> Path:
        files = dict(files or {})
        symlinks = dict(symlinks or {})
        devices = list(devices)

        dirs: set[str] = set()
        for name in [*files, *symlinks, *devices]:
            for parent in PurePosixPath(name).parents:
                if str(parent) != ".":
                    dirs.add(str(parent))

        entries = [(d, stat.S_IFDIR | 0o755, b"", (0, 0)) for d in sorted(dirs)]
        entries += [(n, stat.S_IFREG | 0o644, data, (0, 0)) for n, data in sorted(files.items())]
        entries += [
            (n, stat.S_IFLNK | 0o777, target.encode(), (0, 0))
            for n, target in sorted(symlinks.items())
        ]
        entries += [(n, stat.S_IFCHR | 0o666, b"", (1, 3)) for n in devices]

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(_compress(build_newc(entries), compression))
        return path

    return _factory


@pytest.fixture
def read_initrd() -> Callable[[Path], dict[str, tuple[int, bytes]]]:
    """Factory fixture: map normalized entry names of an archive to ``(mode, data)``."""

    def _reader(path: Path) -> dict[str, tuple[int, bytes]]:
        raw = _decompress(path.read_bytes())
        return {
            normalize_entry(name): (mode, body)
            for name, mode, body in read_newc(raw)
            if normalize_entry(name) not in ("", ".")
        }

    return _reader


# ---------------------------------------------------------------------------
# Extraction doubles
# ---------------------------------------------------------------------------


class NewcTestStrategy(ExtractionStrategy):
    """In-process newc extractor that, like unprivileged cpio, cannot mknod."""

    name: ClassVar[str] = "newc-test"
    tool: ClassVar[str] = "newc-test"
    tolerates_failure: ClassVar[bool] = True

    def is_available(self) -> bool:
        return True

    def extract(self, raw: Path, dest: Path) -> ExtractionResult:
        errors: list[str] = []
        for name, mode, body in read_newc(raw.read_bytes()):
            rel = normalize_entry(name)
            if rel in ("", "."):
                continue
            target = dest / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            if stat.S_ISDIR(mode):
                target.mkdir(exist_ok=True)
            elif stat.S_ISREG(mode):
                target.write_bytes(body)
            elif stat.S_ISLNK(mode):
                os.symlink(body.decode(), target)
            else:
                errors.append(f"newc-test: {rel}: Cannot mknod: Operation not permitted")
        if errors:
            return ExtractionResult(
                strategy=self.name,
                status=ExtractionStatus.PARTIAL,
                returncode=2,
                diagnostics="\n".join(errors) + "\n",
            )
        return ExtractionResult(strategy=self.name, status=ExtractionStatus.SUCCESS, returncode=0)

    def list_entries(self, raw: Path) -> list[str]:
        names = (normalize_entry(name) for name, _, _ in read_newc(raw.read_bytes()))
        return [n for n in names if n not in ("", ".")]


class StubStrategy(ExtractionStrategy):
    """Extraction double with a fixed status that writes a fixed set of files.

    *listing* is what ``list_entries`` reports; it defaults to the files written.
    """

    name: ClassVar[str] = "stub"
    tool: ClassVar[str] = "stub"
    tolerates_failure: ClassVar[bool] = True

    def __init__(
        self,
        status: ExtractionStatus = ExtractionStatus.SUCCESS,
        files: Mapping[str, bytes] | None = None,
        *,
        diagnostics: str = "",
        device_nodes: bool = False,
        listing: Iterable[str] | None = None,
    ) -> None:
        self.status = status
        self.files = dict(files or {})
        self.diagnostics = diagnostics
        self.device_nodes = device_nodes
        self.listing = list(listing) if listing is not None else sorted(self.files)
        self.calls = 0

    @property
    def creates_device_nodes(self) -> bool:  # type: ignore[override]
        return self.device_nodes

    def extract(self, raw: Path, dest: Path) -> ExtractionResult:
        self.calls += 1
        if self.status is ExtractionStatus.UNAVAILABLE:
            return self._unavailable()
        for rel, data in self.files.items():
            target = dest / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return ExtractionResult(
            strategy=self.name,
            status=self.status,
            returncode=0 if self.status is ExtractionStatus.SUCCESS else 2,
            diagnostics=self.diagnostics,
        )

    def list_entries(self, raw: Path) -> list[str]:
        return list(self.listing)


@pytest.fixture
def newc_strategy() -> NewcTestStrategy:
    """Provide the in-process newc extraction double."""
    return NewcTestStrategy()


@pytest.fixture
def stub_strategy() -> Callable[..., StubStrategy]:
    """Factory fixture: build a StubStrategy."""
    return StubStrategy


# ---------------------------------------------------------------------------
# Pipeline configuration and a local mirror
# ---------------------------------------------------------------------------

SAMPLE_BOOTLOCAL = (
    b"#!/bin/sh\n"
    b"sudo gunzip -c grub.gz | dd of=/dev/sda bs=4M\n"
    b"sudo mkfs.ntfs -f /dev/sda2 -L DATA\n"
    b"sudo reboot\n"
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep operator TINYCORE_AUDIT_* variables out of every test."""
    for key in list(os.environ):
        if key.startswith("TINYCORE_AUDIT_"):
            monkeypatch.delenv(key)


@pytest.fixture
def mirror_root(tmp_path: Path) -> Path:
    return tmp_path / "mirror"


@pytest.fixture
def pipeline_config(tmp_path: Path, mirror_root: Path) -> PipelineConfig:
    """Provide a PipelineConfig isolated under tmp_path with a file:// mirror."""
    return PipelineConfig(
        work_root=tmp_path / "work",
        mirror=mirror_root.as_uri(),
        install_dir=tmp_path / "boot" / "tinycore",
    )


@pytest.fixture
def publish(pipeline_config: PipelineConfig, mirror_root: Path) -> Callable[[str, bytes], Path]:
    """Factory fixture: place a file where the config's release URLs point."""
    release_dir = (
        mirror_root
        / pipeline_config.tce_version
        / pipeline_config.arch
        / "release"
        / "distribution_files"
    )

    def _publish(name: str, data: bytes) -> Path:
        release_dir.mkdir(parents=True, exist_ok=True)
        path = release_dir / name
        path.write_bytes(data)
        return path

    return _publish


@pytest.fixture
def published_release(
    pipeline_config: PipelineConfig,
    publish: Callable[[str, bytes], Path],
    make_initrd: Callable[..., Path],
    tmp_path: Path,
) -> PipelineConfig:
    """Publish a small kernel and initrd (with a device node) to the local mirror."""
    publish(pipeline_config.kernel_name, b"\x7fKERNEL" * 64)
    initrd = make_initrd(
        tmp_path / "build" / pipeline_config.initrd_name,
        {
            "opt/bootlocal.sh": SAMPLE_BOOTLOCAL,
            "etc/hostname": b"box\n",
            "usr/bin/tool": b"\x7fELF" + bytes(range(256)),
        },
        devices=["dev/null"],
        symlinks={"bin/sh": "busybox"},
    )
    publish(pipeline_config.initrd_name, initrd.read_bytes())
    return pipeline_config
