"""Audit pipeline stages: registry mapping stage_id to stage class.

Usage::

    from tinycore_audit.stages import STAGE_ORDER, get_stage

    for stage_id in STAGE_ORDER:
        get_stage(stage_id).run_stage(run_context)
"""

from __future__ import annotations

from tinycore_audit.stages.base import BaseStage
from tinycore_audit.stages.s1_fetch import FetchStage
from tinycore_audit.stages.s2_unpack import UnpackStage
from tinycore_audit.stages.s3_patch import PatchStage
from tinycore_audit.stages.s4_repack import RepackStage
from tinycore_audit.stages.s5_snippet import SnippetStage

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    "s1_fetch": FetchStage,
    "s2_unpack": UnpackStage,
    "s3_patch": PatchStage,
    "s4_repack": RepackStage,
    "s5_snippet": SnippetStage,
}

# Strictly sequential: each stage's post-condition is the next one's precondition.
STAGE_ORDER: list[str] = [
    "s1_fetch",
    "s2_unpack",
    "s3_patch",
    "s4_repack",
    "s5_snippet",
]


def get_stage(stage_id: str) -> BaseStage:
    """Instantiate and return a stage by its ``stage_id``.

    Raises ``KeyError`` if the stage_id is not registered.
    """
    try:
        cls = STAGE_REGISTRY[stage_id]
    except KeyError:
        raise KeyError(
            f"Unknown stage_id {stage_id!r}. "
            f"Registered stages: {sorted(STAGE_REGISTRY.keys())}"
        ) from None
    return cls()


__all__ = [
    "BaseStage",
    "STAGE_REGISTRY",
    "STAGE_ORDER",
    "get_stage",
    "FetchStage",
    "UnpackStage",
    "PatchStage",
    "RepackStage",
    "SnippetStage",
]
