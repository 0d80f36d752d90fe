"""Pre-flight checks and the package-installer collaborator.

Runs before any mutation. Missing privilege or a missing essential tool
raises ``PreflightError``; a missing non-essential tool is reported and
the pipeline runs degraded (e.g. cpio-only extraction without bsdtar).
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Sequence

from pydantic import BaseModel, ConfigDict

from tinycore_audit.core.errors import PreflightError
from tinycore_audit.models.reports import Outcome

logger = logging.getLogger(__name__)


class ToolRequirement(BaseModel):
    """A command-line tool, the package that provides it, and whether it is essential."""

    model_config = ConfigDict(frozen=True)

    tool: str
    package: str
    essential: bool = True


DEFAULT_REQUIREMENTS: tuple[ToolRequirement, ...] = (
    ToolRequirement(tool="cpio", package="cpio", essential=True),
    ToolRequirement(tool="bsdtar", package="libarchive-tools", essential=False),
)

# Installed alongside the tools; not checked on PATH.
SUPPORT_PACKAGES: tuple[str, ...] = ("ca-certificates",)

Runner = Callable[..., subprocess.CompletedProcess]


class PackageInstaller:
    """``apt-get`` wrapper. Each call is a blocking subprocess.

    Parameters
    ----------
    runner:
        ``subprocess.run``-compatible callable, injectable for tests.
    """

    def __init__(self, runner: Runner | None = None) -> None:
        self._run = runner or subprocess.run
        self._updated = False

    @staticmethod
    def available() -> bool:
        return shutil.which("apt-get") is not None

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["DEBIAN_FRONTEND"] = "noninteractive"
        return env

    def update(self) -> Outcome:
        proc = self._run(["apt-get", "update", "-y"], capture_output=True, env=self._env())
        self._updated = proc.returncode == 0
        return Outcome(name="apt-get update", ok=self._updated, detail=_tail(proc))

    def install(self, packages: Sequence[str]) -> Outcome:
        if not packages:
            return Outcome(name="apt-get install", ok=True, detail="nothing to install")
        if not self._updated:
            self.update()
        cmd = ["apt-get", "install", "-y", *packages]
        proc = self._run(cmd, capture_output=True, env=self._env())
        return Outcome(
            name="apt-get install " + " ".join(packages),
            ok=proc.returncode == 0,
            detail=_tail(proc),
        )


def _tail(proc: subprocess.CompletedProcess, lines: int = 5) -> str:
    err = proc.stderr or b""
    if isinstance(err, bytes):
        err = err.decode("utf-8", errors="replace")
    return "\n".join(err.strip().splitlines()[-lines:])


def is_root() -> bool:
    return os.geteuid() == 0


def missing_tools(requirements: Sequence[ToolRequirement]) -> list[ToolRequirement]:
    return [r for r in requirements if shutil.which(r.tool) is None]


def run_preflight(
    requirements: Sequence[ToolRequirement] = DEFAULT_REQUIREMENTS,
    *,
    install_deps: bool = False,
    installer: PackageInstaller | None = None,
    root_check: Callable[[], bool] = is_root,
) -> list[Outcome]:
    """Check privilege and tools, optionally installing what is missing.

    Returns one ``Outcome`` per requirement. Raises ``PreflightError`` if
    dependency installation is requested without root or a package
    manager, or if an essential tool is still missing at the end.
    """
    outcomes: list[Outcome] = []

    if install_deps:
        if not root_check():
            raise PreflightError("Please run as root (sudo) so packages can be installed.")
        if installer is None:
            if not PackageInstaller.available():
                raise PreflightError(
                    "This tool expects apt-get (Debian/Ubuntu) to install dependencies."
                )
            installer = PackageInstaller()

        missing = missing_tools(requirements)
        packages = [r.package for r in missing] + list(SUPPORT_PACKAGES)
        logger.info("Installing dependencies: %s", ", ".join(packages))
        result = installer.install(packages)
        if not result.ok:
            logger.warning("Package installation reported errors: %s", result.detail)

    for req in requirements:
        found = shutil.which(req.tool)
        if found:
            outcomes.append(Outcome(name=req.tool, ok=True, detail=found))
            continue
        if req.essential:
            raise PreflightError(
                f"Essential tool {req.tool!r} (package {req.package}) is not installed."
            )
        logger.warning(
            "Optional tool %s (package %s) not found; running degraded", req.tool, req.package
        )
        outcomes.append(Outcome(name=req.tool, ok=False, detail="not found"))

    return outcomes
