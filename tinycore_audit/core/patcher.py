"""Tree patcher: writes the safe startup script into the WorkingTree.

The target file is always fully overwritten from the template. Path
components inside the tree that are symlinks are replaced by real
directories first, so nothing is ever written through a link that
points back onto the host.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath

from tinycore_audit.core.errors import PatchError
from tinycore_audit.core.hasher import content_address
from tinycore_audit.core.template import TEMPLATE_VERSION, render_safe_script
from tinycore_audit.models.reports import Outcome, PatchReport

logger = logging.getLogger(__name__)


class TreePatcher:
    """Render the safe script to ``work_dir / target``.

    Parameters
    ----------
    work_dir:
        Root of an already unpacked tree.
    target:
        Tree-relative path of the startup script.
    status_log:
        Tree-relative path of the status log the script appends to.
    packages, service_script:
        Passed through to ``render_safe_script``.
    """

    def __init__(
        self,
        work_dir: Path,
        target: str = "opt/bootlocal.sh",
        *,
        status_log: str = "srv/lab",
        packages: tuple[str, ...] = ("ntfs-3g", "gdisk", "openssh.tcz"),
        service_script: str = "/usr/local/etc/init.d/openssh",
    ) -> None:
        self.work_dir = Path(work_dir)
        self.target = target
        self.status_log = status_log
        self.packages = packages
        self.service_script = service_script

    @property
    def target_path(self) -> Path:
        return self.work_dir / self.target

    def render(self) -> str:
        return render_safe_script(
            packages=self.packages,
            service_script=self.service_script,
            status_log="/" + PurePosixPath(self.status_log).as_posix(),
        )

    def patch(self, aux_binary: Outcome | None = None) -> PatchReport:
        """Write the script (mode 0755) and seed the status log."""
        if not self.work_dir.is_dir():
            raise PatchError(f"Working tree {self.work_dir} does not exist")

        content = self.render()
        target = self.target_path
        log_path = self.work_dir / self.status_log
        try:
            self.prepare_path(self.target)
            target.write_text(content, encoding="utf-8")
            os.chmod(target, 0o755)

            self.prepare_path(self.status_log)
            log_path.write_text(
                f"tinycore-audit safe image (template v{TEMPLATE_VERSION})\n", encoding="utf-8"
            )
        except OSError as exc:
            raise PatchError(f"Cannot write {target}: {exc}") from exc

        logger.info("Wrote safe %s (%d lines)", self.target, content.count("\n"))
        return PatchReport(
            target=target,
            template_version=TEMPLATE_VERSION,
            line_count=content.count("\n"),
            content_address=content_address(target),
            status_log=log_path,
            aux_binary=aux_binary,
        )

    def prepare_path(self, rel: str) -> Path:
        """Make ``work_dir / rel`` safe to create and return it.

        Every parent inside the tree becomes a real directory and an
        existing entry at *rel* itself is removed. Raises ``OSError``.
        """
        current = self.work_dir
        parts = PurePosixPath(rel).parts
        for part in parts[:-1]:
            current = current / part
            if current.is_symlink() or (current.exists() and not current.is_dir()):
                current.unlink()
            current.mkdir(exist_ok=True)
        path = current / parts[-1]
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.is_dir():
            raise IsADirectoryError(f"{path} is a directory")
        return path
