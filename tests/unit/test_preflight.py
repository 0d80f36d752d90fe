"""Unit tests for pre-flight checks and the PackageInstaller wrapper."""

from __future__ import annotations

import logging
import subprocess

import pytest

from tinycore_audit.core.errors import PreflightError
from tinycore_audit.core.preflight import (
    SUPPORT_PACKAGES,
    PackageInstaller,
    ToolRequirement,
    missing_tools,
    run_preflight,
)

PRESENT = ToolRequirement(tool="sh", package="dash", essential=True)
ABSENT_ESSENTIAL = ToolRequirement(tool="tinycore-audit-no-cpio", package="cpio", essential=True)
ABSENT_OPTIONAL = ToolRequirement(
    tool="tinycore-audit-no-bsdtar", package="libarchive-tools", essential=False
)


class RecordingRunner:
    """subprocess.run stand-in that records commands."""

    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.calls: list[tuple[list[str], dict]] = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((list(cmd), kwargs))
        return subprocess.CompletedProcess(cmd, self.returncode, b"", b"E: something\n")


class TestRunPreflight:
    def test_all_present(self):
        outcomes = run_preflight([PRESENT])
        assert [o.ok for o in outcomes] == [True]

    def test_missing_essential_tool(self):
        with pytest.raises(PreflightError, match="cpio"):
            run_preflight([PRESENT, ABSENT_ESSENTIAL])

    def test_missing_optional_tool_degrades(self, caplog):
        with caplog.at_level(logging.WARNING):
            outcomes = run_preflight([PRESENT, ABSENT_OPTIONAL])
        assert [o.ok for o in outcomes] == [True, False]
        assert "running degraded" in caplog.text

    def test_install_requires_root(self):
        with pytest.raises(PreflightError, match="root"):
            run_preflight([PRESENT], install_deps=True, root_check=lambda: False)

    def test_installs_missing_packages_and_support(self):
        runner = RecordingRunner()
        run_preflight(
            [PRESENT, ABSENT_OPTIONAL],
            install_deps=True,
            installer=PackageInstaller(runner),
            root_check=lambda: True,
        )
        commands = [cmd for cmd, _ in runner.calls]
        assert commands[0] == ["apt-get", "update", "-y"]
        assert commands[1] == ["apt-get", "install", "-y", "libarchive-tools", *SUPPORT_PACKAGES]
        assert all(kw["env"]["DEBIAN_FRONTEND"] == "noninteractive" for _, kw in runner.calls)

    def test_install_failure_is_only_a_warning(self, caplog):
        runner = RecordingRunner(returncode=100)
        with caplog.at_level(logging.WARNING):
            outcomes = run_preflight(
                [PRESENT],
                install_deps=True,
                installer=PackageInstaller(runner),
                root_check=lambda: True,
            )
        assert outcomes[0].ok is True
        assert "Package installation reported errors" in caplog.text

    def test_without_install_deps_nothing_runs(self):
        runner = RecordingRunner()
        run_preflight([PRESENT], installer=PackageInstaller(runner))
        assert runner.calls == []


class TestPackageInstaller:
    def test_empty_install_is_a_no_op(self):
        runner = RecordingRunner()
        outcome = PackageInstaller(runner).install([])
        assert outcome.ok is True
        assert runner.calls == []

    def test_update_runs_once(self):
        runner = RecordingRunner()
        installer = PackageInstaller(runner)
        installer.install(["cpio"])
        installer.install(["ca-certificates"])
        assert [cmd[1] for cmd, _ in runner.calls] == ["update", "install", "install"]

    def test_failure_detail_is_stderr_tail(self):
        outcome = PackageInstaller(RecordingRunner(returncode=1)).install(["cpio"])
        assert outcome.ok is False
        assert outcome.detail == "E: something"


def test_missing_tools():
    assert missing_tools([PRESENT, ABSENT_ESSENTIAL]) == [ABSENT_ESSENTIAL]
