"""Pipeline configuration model.

Every filesystem location and URL the pipeline touches lives here, so a
test or a second operator can point a run at an isolated ``work_root``
without touching module-level state.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

_PACKAGE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")

DEFAULT_AUX_PACKAGES: tuple[str, ...] = ("ntfs-3g", "gdisk", "openssh.tcz")


class PipelineConfig(BaseModel):
    """Explicit parameters for one audit run."""

    model_config = ConfigDict(frozen=True)

    # Release selection
    mirror: str = "http://tinycorelinux.net"
    tce_version: str = "14.x"
    arch: str = "x86_64"
    kernel_name: str = "vmlinuz64"
    initrd_name: str = "corepure64.gz"
    patched_initrd_name: str = "corepure64-ssh.gz"
    snippet_name: str = "40_custom_tinycore_snippet"

    # Working locations (never under the boot directory)
    work_root: Path = Path("/tmp/tinycore_audit")

    # Install-time locations, referenced by the GRUB fragment only
    install_dir: Path = Path("/boot/tinycore")

    # Tree patch
    patch_target: str = "opt/bootlocal.sh"
    status_log: str = "srv/lab"
    aux_binary_target: str = "srv/busybox"
    aux_packages: tuple[str, ...] = DEFAULT_AUX_PACKAGES
    service_script: str = "/usr/local/etc/init.d/openssh"

    # Boot menu
    menu_title: str = "TinyCore SSH Auto (SAFE PREVIEW)"
    kernel_args: str = "console=ttyS0 quiet"

    # Network
    fetch_timeout_seconds: float = 30.0
    optional_fetch_timeout_seconds: float = 3.0
    aux_binary_url: str = ""
    gz_link: str = ""  # recorded in the fetch result, never fetched

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @field_validator("work_root")
    @classmethod
    def _check_work_root(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError(f"work_root must be absolute, got {value}")
        if value == Path(value.anchor):
            raise ValueError("work_root must not be the filesystem root")
        if value == Path("/boot") or Path("/boot") in value.parents:
            raise ValueError(f"work_root must not live under /boot: {value}")
        return value

    @field_validator("patch_target", "status_log", "aux_binary_target")
    @classmethod
    def _check_relative(cls, value: str) -> str:
        path = PurePosixPath(value)
        if path.is_absolute() or ".." in path.parts or not path.parts:
            raise ValueError(f"tree path must be relative and inside the tree: {value!r}")
        return value

    @field_validator("aux_packages")
    @classmethod
    def _check_packages(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for name in value:
            if not _PACKAGE_NAME.match(name):
                raise ValueError(f"invalid package name: {name!r}")
        return value

    @model_validator(mode="after")
    def _check_disjoint(self) -> PipelineConfig:
        root = self.work_root
        if root == self.install_dir or self.install_dir in root.parents:
            raise ValueError(
                f"work_root {root} must not be inside install_dir {self.install_dir}"
            )
        return self

    # ------------------------------------------------------------------
    # Derived locations
    # ------------------------------------------------------------------

    @property
    def work_dir(self) -> Path:
        """Extraction root for the initrd tree."""
        return self.work_root / "initrd"

    @property
    def out_dir(self) -> Path:
        return self.work_root / "out"

    @property
    def scratch_dir(self) -> Path:
        """Scratch area for raw streams and round-trip verification."""
        return self.work_root / "scratch"

    @property
    def lock_path(self) -> Path:
        """Single-instance lock, kept beside work_root so a reset leaves it alone."""
        return self.work_root.with_name(self.work_root.name + ".lock")

    @property
    def warnings_log(self) -> Path:
        return self.work_root / "cpio_warnings.log"

    @property
    def release_base_url(self) -> str:
        mirror = self.mirror.rstrip("/")
        return f"{mirror}/{self.tce_version}/{self.arch}/release/distribution_files"

    @property
    def kernel_url(self) -> str:
        return f"{self.release_base_url}/{self.kernel_name}"

    @property
    def initrd_url(self) -> str:
        return f"{self.release_base_url}/{self.initrd_name}"

    @property
    def kernel_path(self) -> Path:
        return self.out_dir / self.kernel_name

    @property
    def initrd_path(self) -> Path:
        return self.out_dir / self.initrd_name

    @property
    def patched_initrd_path(self) -> Path:
        return self.out_dir / self.patched_initrd_name

    @property
    def snippet_path(self) -> Path:
        return self.out_dir / self.snippet_name

    @property
    def install_kernel_path(self) -> PurePosixPath:
        return PurePosixPath(self.install_dir) / self.kernel_name

    @property
    def install_initrd_path(self) -> PurePosixPath:
        return PurePosixPath(self.install_dir) / self.patched_initrd_name

    @classmethod
    def from_settings(cls, settings, **overrides) -> PipelineConfig:
        """Build a config from ``AuditSettings``; keyword overrides win."""
        values = {
            "mirror": settings.mirror,
            "tce_version": settings.tce_version,
            "arch": settings.arch,
            "work_root": settings.work_root,
            "install_dir": settings.install_dir,
            "fetch_timeout_seconds": settings.fetch_timeout_seconds,
            "optional_fetch_timeout_seconds": settings.optional_fetch_timeout_seconds,
            "aux_binary_url": settings.aux_binary_url,
            "gz_link": settings.gz_link,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
