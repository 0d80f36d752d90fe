"""Unit tests for the extraction backends.

Tests that drive the real bsdtar/cpio binaries are skipped when the tool
is not installed.
"""

from __future__ import annotations

import gzip
import shutil
import subprocess
from pathlib import Path
from typing import ClassVar

import pytest

from tinycore_audit.core.extraction import (
    BsdtarStrategy,
    CpioStrategy,
    default_strategies,
    normalize_entry,
)
from tinycore_audit.models.reports import ExtractionStatus

needs_cpio = pytest.mark.skipif(shutil.which("cpio") is None, reason="cpio not installed")
needs_bsdtar = pytest.mark.skipif(shutil.which("bsdtar") is None, reason="bsdtar not installed")


class _MissingTool(CpioStrategy):
    tool: ClassVar[str] = "tinycore-audit-no-such-tool"


def _raw_archive(make_initrd, tmp_path: Path, **kwargs) -> Path:
    archive = make_initrd(tmp_path / "initrd.gz", **kwargs)
    raw = tmp_path / "initrd.cpio"
    raw.write_bytes(gzip.decompress(archive.read_bytes()))
    return raw


class TestNormalizeEntry:
    @pytest.mark.parametrize(
        "name, expected",
        [("./opt/x", "opt/x"), ("/opt/x", "opt/x"), ("././etc/", "etc"), ("bin", "bin")],
    )
    def test_forms(self, name: str, expected: str):
        assert normalize_entry(name) == expected


class TestStrategyContract:
    def test_default_order(self):
        assert [s.name for s in default_strategies()] == ["bsdtar", "cpio"]

    def test_only_cpio_creates_device_nodes(self):
        assert BsdtarStrategy.creates_device_nodes is False
        assert CpioStrategy.creates_device_nodes is True

    def test_missing_tool_reports_unavailable(self, tmp_path: Path):
        result = _MissingTool().extract(tmp_path / "raw", tmp_path)
        assert result.status is ExtractionStatus.UNAVAILABLE

    def test_only_cpio_tolerates_failure(self):
        assert BsdtarStrategy.tolerates_failure is False
        assert CpioStrategy.tolerates_failure is True

    def test_nonzero_exit_is_partial_for_cpio(self):
        proc = subprocess.CompletedProcess(["cpio"], 2, b"", b"cpio: dev/null: Cannot mknod\n")
        result = CpioStrategy()._result(proc)
        assert result.status is ExtractionStatus.PARTIAL
        assert result.returncode == 2
        assert "Cannot mknod" in result.diagnostics

    def test_nonzero_exit_is_failed_for_bsdtar(self):
        proc = subprocess.CompletedProcess(["bsdtar"], 1, b"", b"bsdtar: Truncated input file\n")
        result = BsdtarStrategy()._result(proc)
        assert result.status is ExtractionStatus.FAILED
        assert "Truncated" in result.diagnostics

    def test_listing_drops_dot_and_trailer(self):
        listing = b".\n./opt\n./opt/bootlocal.sh\nTRAILER!!!\n"
        assert CpioStrategy._clean_listing(listing) == ["opt", "opt/bootlocal.sh"]


@needs_cpio
class TestCpioStrategy:
    def test_extracts_regular_files(self, make_initrd, tmp_path: Path):
        raw = _raw_archive(make_initrd, tmp_path, files={"opt/bootlocal.sh": b"#!/bin/sh\n"})
        dest = tmp_path / "tree"
        dest.mkdir()
        result = CpioStrategy().extract(raw, dest)
        assert result.status is ExtractionStatus.SUCCESS
        assert (dest / "opt" / "bootlocal.sh").read_bytes() == b"#!/bin/sh\n"

    def test_device_node_does_not_abort(self, make_initrd, tmp_path: Path):
        raw = _raw_archive(
            make_initrd, tmp_path, files={"etc/hostname": b"box\n"}, devices=["dev/null"]
        )
        dest = tmp_path / "tree"
        dest.mkdir()
        result = CpioStrategy().extract(raw, dest)
        # Unprivileged: mknod fails (partial). Root: the node is created.
        assert result.status in (ExtractionStatus.SUCCESS, ExtractionStatus.PARTIAL)
        assert (dest / "etc" / "hostname").read_bytes() == b"box\n"

    def test_list_entries(self, make_initrd, tmp_path: Path):
        raw = _raw_archive(make_initrd, tmp_path, files={"etc/hostname": b"box\n"})
        assert CpioStrategy().list_entries(raw) == ["etc", "etc/hostname"]


@needs_bsdtar
class TestBsdtarStrategy:
    def test_skips_device_nodes(self, make_initrd, tmp_path: Path):
        raw = _raw_archive(
            make_initrd, tmp_path, files={"etc/hostname": b"box\n"}, devices=["dev/null"]
        )
        dest = tmp_path / "tree"
        dest.mkdir()
        result = BsdtarStrategy().extract(raw, dest)
        assert result.status is ExtractionStatus.SUCCESS
        assert (dest / "etc" / "hostname").read_bytes() == b"box\n"
        assert not (dest / "dev" / "null").exists()


class TestTruncatedArchive:
    @staticmethod
    def _truncated(make_initrd, tmp_path: Path) -> Path:
        raw = _raw_archive(
            make_initrd,
            tmp_path,
            files={"etc/a": b"a" * 512, "etc/b": b"b" * 512, "opt/bootlocal.sh": b"#!/bin/sh\n"},
        )
        data = raw.read_bytes()
        raw.write_bytes(data[: len(data) // 2])
        return raw

    @needs_bsdtar
    def test_bsdtar_reports_failure(self, make_initrd, tmp_path: Path):
        raw = self._truncated(make_initrd, tmp_path)
        dest = tmp_path / "tree"
        dest.mkdir()
        assert BsdtarStrategy().extract(raw, dest).status is ExtractionStatus.FAILED

    @needs_cpio
    def test_cpio_listing_fails(self, make_initrd, tmp_path: Path):
        raw = self._truncated(make_initrd, tmp_path)
        with pytest.raises(subprocess.CalledProcessError):
            CpioStrategy().list_entries(raw)
