"""Operator configuration: env-driven.

Reads from a .env file and TINYCORE_AUDIT_* environment variables. The
resulting ``AuditSettings`` is only consulted at the edges (CLI); every
component receives an explicit ``PipelineConfig`` built from it.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class AuditSettings(BaseSettings):
    """Settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export TINYCORE_AUDIT_TCE_VERSION=15.x
        export TINYCORE_AUDIT_WORK_ROOT=/var/tmp/tc
        export TINYCORE_AUDIT_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TINYCORE_AUDIT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    debug: bool = False

    # Release selection
    tce_version: str = "14.x"
    arch: str = "x86_64"
    mirror: str = "http://tinycorelinux.net"

    # Filesystem
    work_root: Path = Path("/tmp/tinycore_audit")
    install_dir: Path = Path("/boot/tinycore")
    grub_custom: Path = Path("/etc/grub.d/40_custom")

    # Network
    fetch_timeout_seconds: float = 30.0
    optional_fetch_timeout_seconds: float = 3.0
    aux_binary_url: str = ""  # opt-in; fetched best-effort into srv/busybox
    gz_link: str = ""         # recorded in the fetch result, never fetched

    # Apply step
    non_interactive: bool = False
