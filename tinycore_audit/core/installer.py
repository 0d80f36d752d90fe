"""Installer: the privileged apply step.

Consumes the kernel, patched initrd, and GRUB snippet produced by an
audit run. The snippet must boot the files from where this installer puts
them; otherwise nothing is touched. Then it:

1. backs up existing files in the install dir with a ``.bak-<timestamp>``
   suffix, then copies the new ones in (mode 0644);
2. appends the guarded snippet block to the custom GRUB config unless the
   menu title is already present (backing the config up first);
3. regenerates the GRUB configuration.

Each destructive sub-step asks for confirmation unless non-interactive.
This module never runs as part of the audit pipeline.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from tinycore_audit.core.errors import InstallAborted, InstallError
from tinycore_audit.core.snippet import fragment_paths, insert_fragment
from tinycore_audit.models.reports import InstallReport

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]
Runner = Callable[..., subprocess.CompletedProcess]


def _always_yes(prompt: str) -> bool:
    return True


class Installer:
    """Copy artifacts into the boot directory and register the menu entry.

    Parameters
    ----------
    install_dir:
        Live destination for kernel and initrd (``/boot/tinycore``).
    grub_custom:
        Custom GRUB script receiving the menu entry (``/etc/grub.d/40_custom``).
    identifier:
        Menu title used to detect a prior insertion.
    confirm:
        Prompt callback; ignored when *non_interactive* is true.
    runner:
        ``subprocess.run``-compatible callable for GRUB regeneration.
    which:
        ``shutil.which``-compatible lookup.
    grub_dirs:
        Candidate GRUB directories, in order, used when ``update-grub`` is
        not available.
    clock:
        Returns the time used for the backup suffix.
    """

    def __init__(
        self,
        install_dir: Path,
        grub_custom: Path,
        identifier: str,
        *,
        confirm: Confirm | None = None,
        non_interactive: bool = False,
        runner: Runner | None = None,
        which: Callable[[str], str | None] = shutil.which,
        grub_dirs: tuple[Path, ...] = (Path("/boot/grub"), Path("/boot/grub2")),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.install_dir = Path(install_dir)
        self.grub_custom = Path(grub_custom)
        self.identifier = identifier
        self._confirm = _always_yes if non_interactive or confirm is None else confirm
        self._run = runner or subprocess.run
        self._which = which
        self.grub_dirs = grub_dirs
        self.suffix = ".bak-" + clock().strftime("%Y%m%d-%H%M%S")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def install(self, kernel: Path, initrd: Path, snippet: Path) -> InstallReport:
        """Run the full apply sequence and return what was changed."""
        for source in (kernel, initrd, snippet):
            if not source.is_file() or source.stat().st_size == 0:
                raise InstallError(f"Missing expected file: {source}")

        fragment = snippet.read_text(encoding="utf-8")
        self.check_fragment_targets(fragment, kernel, initrd)

        backups: list[Path] = []
        installed: list[Path] = []

        if not self.install_dir.is_dir():
            logger.info("Creating %s", self.install_dir)
            self.install_dir.mkdir(parents=True, exist_ok=True)

        if not self._confirm(f"Copy kernel and initrd to {self.install_dir}?"):
            raise InstallAborted("Aborted before copying kernel/initrd.")

        try:
            for source in (kernel, initrd):
                dest = self.install_dir / source.name
                backup = self.backup_if_exists(dest)
                if backup:
                    backups.append(backup)
                shutil.copyfile(source, dest)
                os.chmod(dest, 0o644)
                installed.append(dest)
                logger.info("Installed %s", dest)
        except OSError as exc:
            raise InstallError(self._rollback_hint(f"Copy failed: {exc}")) from exc

        existing = self.grub_custom.read_text(encoding="utf-8") if self.grub_custom.exists() else ""
        if self.identifier in existing:
            logger.info("Guarded GRUB block already present in %s; skipping append", self.grub_custom)
            inserted = False
        elif not self._confirm(f"Append GRUB entry to {self.grub_custom}?"):
            logger.info("Skipped GRUB append")
            return InstallReport(
                installed=installed,
                backups=backups,
                fragment_skipped=True,
                backup_suffix=self.suffix,
            )
        else:
            try:
                backup = self.backup_if_exists(self.grub_custom)
                if backup:
                    backups.append(backup)
                self.grub_custom.parent.mkdir(parents=True, exist_ok=True)
                inserted = insert_fragment(self.grub_custom, fragment, self.identifier)
                os.chmod(self.grub_custom, 0o755)
            except OSError as exc:
                raise InstallError(self._rollback_hint(f"GRUB append failed: {exc}")) from exc

        regenerated = self.regenerate()
        return InstallReport(
            installed=installed,
            backups=backups,
            fragment_inserted=inserted,
            regenerated_with=regenerated,
            backup_suffix=self.suffix,
        )

    def check_fragment_targets(self, fragment: str, kernel: Path, initrd: Path) -> None:
        """Raise ``InstallError`` unless *fragment* boots the files this installer writes."""
        found = fragment_paths(fragment)
        expected = {
            "linux": (self.install_dir / kernel.name).as_posix(),
            "initrd": (self.install_dir / initrd.name).as_posix(),
        }
        for keyword, path in expected.items():
            if found.get(keyword) != path:
                raise InstallError(
                    f"GRUB snippet {keyword} path {found.get(keyword)!r} does not match the "
                    f"install location {path}; re-run the audit with the same install dir"
                )

    def backup_if_exists(self, path: Path) -> Path | None:
        """Copy *path* to ``path + suffix`` preserving metadata."""
        if not path.exists():
            return None
        backup = path.with_name(path.name + self.suffix)
        shutil.copy2(path, backup)
        logger.info("Backed up %s -> %s", path.name, backup)
        return backup

    def regenerate(self) -> str:
        """Regenerate grub.cfg; returns the command used."""
        if self._which("update-grub"):
            if self._which("grub-probe"):
                root_check = self._run(["grub-probe", "/"], capture_output=True)
                if root_check.returncode != 0:
                    raise InstallError(
                        self._rollback_hint(
                            "grub-probe failed; likely a container/chroot without "
                            "/dev, /proc, /sys. Run update-grub on the real host."
                        )
                    )
            cmd = ["update-grub"]
        else:
            cmd = None
            for grub_dir in self.grub_dirs:
                if grub_dir.is_dir():
                    tool = "grub2-mkconfig" if grub_dir.name == "grub2" else "grub-mkconfig"
                    cmd = [tool, "-o", str(grub_dir / "grub.cfg")]
                    break
            if cmd is None:
                raise InstallError(
                    self._rollback_hint(
                        "Could not find GRUB directory. Please update your bootloader manually."
                    )
                )

        logger.info("Updating GRUB configuration: %s", " ".join(cmd))
        try:
            proc = self._run(cmd, capture_output=True)
        except OSError as exc:
            raise InstallError(self._rollback_hint(f"{cmd[0]} failed to start: {exc}")) from exc
        if proc.returncode != 0:
            raise InstallError(self._rollback_hint(f"{cmd[0]} exited with {proc.returncode}"))
        return " ".join(cmd)

    def _rollback_hint(self, message: str) -> str:
        return f"{message} Roll back using backups with suffix {self.suffix}."
