"""Per-stage report models.

Best-effort operations report an ``Outcome`` instead of raising, so a
skipped optional download or package load is visible to the caller but
never fails the pipeline.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class Outcome(BaseModel):
    """Result of a best-effort step."""

    model_config = ConfigDict(frozen=True)

    name: str
    ok: bool
    detail: str = ""


class ExtractionStatus(str, Enum):
    """Uniform result of one extraction backend."""

    SUCCESS = "success"
    PARTIAL = "partial"          # tolerated failure, e.g. mknod denied
    UNAVAILABLE = "unavailable"  # backend tool is not installed
    FAILED = "failed"            # non-zero exit from a backend that tolerates none


class ExtractionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: str
    status: ExtractionStatus
    returncode: int | None = None
    diagnostics: str = ""


class UnpackReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    archive: Path
    compression: str
    strategy: str
    status: ExtractionStatus
    file_count: int
    entry_count: int
    warnings_log: Path | None = None
    skipped_entries: list[str] = []


class PatchReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: Path
    template_version: str
    line_count: int
    content_address: str
    status_log: Path
    aux_binary: Outcome | None = None


class RepackReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    output: Path
    compression: str
    entry_count: int
    size_bytes: int
    content_address: str
    verified_files: int = 0


class InstallReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    installed: list[Path] = []
    backups: list[Path] = []
    fragment_inserted: bool = False
    fragment_skipped: bool = False
    regenerated_with: str = ""
    backup_suffix: str = ""
