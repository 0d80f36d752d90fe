"""Extraction backends for raw newc archive streams.

Two backends are tried in a fixed preference order:

``BsdtarStrategy``
    libarchive's ``bsdtar``. Skips the ``dev/`` subtree entirely, so it
    never needs the mknod capability. Any non-zero exit therefore means a
    damaged archive and is reported as a failure.
``CpioStrategy``
    GNU ``cpio``. Attempts to create device nodes; under restricted
    privilege those entries fail, which is reported as a tolerated partial
    result. The unpacker scrubs ``dev/`` afterwards and checks the archive
    listing to make sure nothing outside ``dev/`` was lost.

Every backend returns an ``ExtractionResult`` with one of four statuses
(success, partial, failed, unavailable) instead of raising for tool failures.
"""

from __future__ import annotations

import abc
import logging
import shutil
import subprocess
from pathlib import Path
from typing import ClassVar

from tinycore_audit.models.reports import ExtractionResult, ExtractionStatus

logger = logging.getLogger(__name__)

# Archive path prefix holding device-special files.
DEVICE_PREFIX = "dev"


def normalize_entry(name: str) -> str:
    """Strip ``./`` and leading slashes so listings compare by tree path."""
    name = name.strip()
    while name.startswith("./"):
        name = name[2:]
    return name.lstrip("/").rstrip("/")


class ExtractionStrategy(abc.ABC):
    """One way of turning a raw newc stream into a directory tree.

    Subclasses set ``name`` and ``tool`` and implement ``extract`` and
    ``list_entries``. ``creates_device_nodes`` tells the unpacker whether
    the ``dev/`` subtree must be removed after extraction;
    ``tolerates_failure`` whether a non-zero exit is a partial result
    (device nodes the tool could not create) or a failed one.
    """

    name: ClassVar[str]
    tool: ClassVar[str]
    creates_device_nodes: ClassVar[bool] = False
    tolerates_failure: ClassVar[bool] = False

    def is_available(self) -> bool:
        return shutil.which(self.tool) is not None

    @abc.abstractmethod
    def extract(self, raw: Path, dest: Path) -> ExtractionResult:
        """Extract *raw* into *dest*, which already exists."""
        ...

    @abc.abstractmethod
    def list_entries(self, raw: Path) -> list[str]:
        """Return normalized entry names of *raw* (no ``.`` or trailer)."""
        ...

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _unavailable(self) -> ExtractionResult:
        return ExtractionResult(strategy=self.name, status=ExtractionStatus.UNAVAILABLE)

    def _result(self, proc: subprocess.CompletedProcess) -> ExtractionResult:
        diagnostics = (proc.stderr or b"").decode("utf-8", errors="replace")
        if proc.returncode == 0:
            return ExtractionResult(
                strategy=self.name,
                status=ExtractionStatus.SUCCESS,
                returncode=0,
                diagnostics=diagnostics,
            )
        status = ExtractionStatus.PARTIAL if self.tolerates_failure else ExtractionStatus.FAILED
        return ExtractionResult(
            strategy=self.name,
            status=status,
            returncode=proc.returncode,
            diagnostics=diagnostics,
        )

    @staticmethod
    def _clean_listing(output: bytes) -> list[str]:
        names: list[str] = []
        for line in output.decode("utf-8", errors="surrogateescape").splitlines():
            name = normalize_entry(line)
            if name and name != "." and name != "TRAILER!!!":
                names.append(name)
        return names

    def __repr__(self) -> str:
        return f"<{type(self).__name__} tool={self.tool!r}>"


class BsdtarStrategy(ExtractionStrategy):
    """Extract with bsdtar, excluding device nodes."""

    name: ClassVar[str] = "bsdtar"
    tool: ClassVar[str] = "bsdtar"

    def extract(self, raw: Path, dest: Path) -> ExtractionResult:
        if not self.is_available():
            return self._unavailable()
        cmd = [
            self.tool, "-xpf", str(raw), "-C", str(dest),
            "--exclude", f"{DEVICE_PREFIX}/*",
            "--exclude", f"./{DEVICE_PREFIX}/*",
        ]
        logger.debug("Running %s", " ".join(cmd))
        return self._result(subprocess.run(cmd, capture_output=True))

    def list_entries(self, raw: Path) -> list[str]:
        proc = subprocess.run([self.tool, "-tf", str(raw)], capture_output=True, check=True)
        return self._clean_listing(proc.stdout)


class CpioStrategy(ExtractionStrategy):
    """Extract with GNU cpio; device-node failures are tolerated."""

    name: ClassVar[str] = "cpio"
    tool: ClassVar[str] = "cpio"
    creates_device_nodes: ClassVar[bool] = True
    tolerates_failure: ClassVar[bool] = True

    def extract(self, raw: Path, dest: Path) -> ExtractionResult:
        if not self.is_available():
            return self._unavailable()
        cmd = [self.tool, "-idm", "--no-absolute-filenames", "--quiet"]
        logger.debug("Running %s < %s in %s", " ".join(cmd), raw, dest)
        with open(raw, "rb") as stream:
            proc = subprocess.run(cmd, stdin=stream, cwd=dest, capture_output=True)
        return self._result(proc)

    def list_entries(self, raw: Path) -> list[str]:
        with open(raw, "rb") as stream:
            proc = subprocess.run(
                [self.tool, "-it", "--quiet"], stdin=stream, capture_output=True, check=True
            )
        return self._clean_listing(proc.stdout)


def default_strategies() -> list[ExtractionStrategy]:
    """Canonical preference order: bsdtar first, cpio as the tolerant fallback."""
    return [BsdtarStrategy(), CpioStrategy()]
