"""tinycore-audit data models: all Pydantic v2, all frozen (immutable)."""

from tinycore_audit.models.artifacts import ArtifactRef, ArtifactSet, RemoteArtifact
from tinycore_audit.models.config import DEFAULT_AUX_PACKAGES, PipelineConfig
from tinycore_audit.models.reports import (
    ExtractionResult,
    ExtractionStatus,
    InstallReport,
    Outcome,
    PatchReport,
    RepackReport,
    UnpackReport,
)
from tinycore_audit.models.stages import VALID_TRANSITIONS, StageState

__all__ = [
    # artifacts
    "RemoteArtifact",
    "ArtifactRef",
    "ArtifactSet",
    # config
    "PipelineConfig",
    "DEFAULT_AUX_PACKAGES",
    # reports
    "Outcome",
    "ExtractionStatus",
    "ExtractionResult",
    "UnpackReport",
    "PatchReport",
    "RepackReport",
    "InstallReport",
    # stages
    "StageState",
    "VALID_TRANSITIONS",
]
