"""Archive unpacker: compressed initrd to a populated WorkingTree.

Policy: fail soft on device nodes, fail hard on everything else. A
tolerant backend (cpio) that exits non-zero is logged as a warning with
its diagnostics appended to the warnings log, provided the archive listing
shows that only entries under ``dev/`` were skipped. A non-zero exit from
any other backend, a skipped entry outside ``dev/``, no available backend,
or an empty tree raise ``UnpackError``.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import subprocess
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from tinycore_audit.core import compression
from tinycore_audit.core.errors import UnpackError
from tinycore_audit.core.extraction import (
    DEVICE_PREFIX,
    ExtractionStrategy,
    default_strategies,
)
from tinycore_audit.models.reports import ExtractionResult, ExtractionStatus, UnpackReport

logger = logging.getLogger(__name__)


class ArchiveUnpacker:
    """Decompress and extract an initrd into *work_dir*.

    Parameters
    ----------
    work_dir:
        Extraction root. Wiped and recreated on every ``unpack()``.
    scratch_dir:
        Where the decompressed raw stream is written.
    warnings_log:
        File receiving diagnostics of tolerated extraction failures.
    strategies:
        Backends in preference order. Defaults to bsdtar then cpio.
    required_dirs:
        Tree-relative directories that must exist afterwards (created if
        the archive lacks them), e.g. the patch target's parent.
    """

    def __init__(
        self,
        work_dir: Path,
        scratch_dir: Path,
        warnings_log: Path,
        strategies: Sequence[ExtractionStrategy] | None = None,
        *,
        required_dirs: Sequence[str] = (),
    ) -> None:
        self.work_dir = Path(work_dir)
        self.scratch_dir = Path(scratch_dir)
        self.warnings_log = Path(warnings_log)
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.required_dirs = tuple(required_dirs)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def unpack(self, archive: Path) -> UnpackReport:
        """Run decompress -> extract -> scrub -> post-condition checks."""
        archive = Path(archive)
        if not archive.is_file():
            raise UnpackError(f"Archive not found: {archive}")

        self._reset_tree()

        kind = compression.detect(archive)
        raw = compression.decompress(archive, self.scratch_dir / "initrd.cpio", kind)
        logger.info("Decompressed %s (%s) to %s", archive.name, kind.value, raw)

        strategy, result = self._extract(raw)
        skipped: list[str] = []
        if result.status is ExtractionStatus.PARTIAL:
            skipped = self._skipped_entries(strategy, result, raw)
            self._log_partial(result, skipped)

        if strategy.creates_device_nodes:
            self._scrub_device_nodes()

        file_count, entry_count = self._count_tree()
        if entry_count == 0:
            raise UnpackError(
                f"Extraction with {strategy.name} left {self.work_dir} empty; "
                "the archive is likely corrupt"
            )

        for rel in self.required_dirs:
            (self.work_dir / rel).mkdir(parents=True, exist_ok=True)

        raw.unlink(missing_ok=True)

        logger.info(
            "Unpacked %d entries (%d regular files) with %s [%s]",
            entry_count,
            file_count,
            strategy.name,
            result.status.value,
        )
        return UnpackReport(
            archive=archive,
            compression=kind.value,
            strategy=strategy.name,
            status=result.status,
            file_count=file_count,
            entry_count=entry_count,
            warnings_log=self.warnings_log if result.status is ExtractionStatus.PARTIAL else None,
            skipped_entries=skipped,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reset_tree(self) -> None:
        if self.work_dir.exists():
            shutil.rmtree(self.work_dir)
        self.work_dir.mkdir(parents=True)

    def _extract(self, raw: Path) -> tuple[ExtractionStrategy, ExtractionResult]:
        """Use the first available backend; only a tolerant backend may fail."""
        tried: list[str] = []
        for strategy in self.strategies:
            result = strategy.extract(raw, self.work_dir)
            if result.status is ExtractionStatus.UNAVAILABLE:
                logger.debug("Extraction backend %s unavailable", strategy.name)
                tried.append(strategy.name)
                continue
            if result.status is ExtractionStatus.FAILED:
                self._append_log(result)
                raise UnpackError(
                    f"{strategy.name} exited with {result.returncode}; the archive is "
                    f"likely corrupt. See {self.warnings_log}"
                )
            return strategy, result

        raise UnpackError(
            "No extraction backend available (tried: " + ", ".join(tried or ["none"]) + ")"
        )

    def _skipped_entries(
        self, strategy: ExtractionStrategy, result: ExtractionResult, raw: Path
    ) -> list[str]:
        """Entries the archive lists but the partial extraction did not create.

        Only entries under ``dev/`` may be missing; anything else means the
        archive is damaged and raises ``UnpackError``.
        """
        try:
            names = strategy.list_entries(raw)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise UnpackError(
                f"{strategy.name} cannot list {raw.name} after a partial extraction; "
                f"the archive is likely corrupt: {exc}"
            ) from exc

        skipped = [name for name in names if not os.path.lexists(self.work_dir / name)]
        lost = [
            name for name in skipped
            if name != DEVICE_PREFIX and not name.startswith(DEVICE_PREFIX + "/")
        ]
        if lost:
            self._append_log(result, skipped)
            raise UnpackError(
                f"{strategy.name} skipped entries outside {DEVICE_PREFIX}/: {lost[:5]}; "
                "the archive is likely corrupt"
            )
        return skipped

    def _append_log(self, result: ExtractionResult, skipped: Sequence[str] = ()) -> None:
        self.warnings_log.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat()
        with open(self.warnings_log, "a", encoding="utf-8") as fh:
            fh.write(f"--- {stamp} {result.strategy} exit={result.returncode}\n")
            fh.write(result.diagnostics)
            if result.diagnostics and not result.diagnostics.endswith("\n"):
                fh.write("\n")
            for name in skipped:
                fh.write(f"skipped: {name}\n")

    def _log_partial(self, result: ExtractionResult, skipped: Sequence[str]) -> None:
        self._append_log(result, skipped)
        logger.warning(
            "%s returned %s (likely device-node mknod failures, %d entries skipped); "
            "continuing. See %s",
            result.strategy,
            result.returncode,
            len(skipped),
            self.warnings_log,
        )

    def _scrub_device_nodes(self) -> None:
        dev = self.work_dir / DEVICE_PREFIX
        if dev.is_symlink() or dev.is_file():
            dev.unlink()
        elif dev.exists():
            shutil.rmtree(dev)
        else:
            return
        logger.debug("Removed partially extracted %s", dev)

    def _count_tree(self) -> tuple[int, int]:
        files = entries = 0
        for dirpath, dirnames, filenames in os.walk(self.work_dir):
            entries += len(dirnames) + len(filenames)
            for name in filenames:
                if stat.S_ISREG((Path(dirpath) / name).lstat().st_mode):
                    files += 1
        return files, entries
