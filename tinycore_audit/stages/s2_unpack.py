"""Stage 2: Unpack.

Decompresses the downloaded initrd and extracts it into the working tree
with the first available extraction backend. Device-node failures are
tolerated and logged; an empty tree is fatal.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any

from tinycore_audit.core.unpacker import ArchiveUnpacker
from tinycore_audit.stages.base import BaseStage


class UnpackStage(BaseStage):
    """Stage 2: populate the WorkingTree from the initrd archive."""

    prerequisites = ("s1_fetch",)

    @property
    def stage_id(self) -> str:
        return "s2_unpack"

    @property
    def display_name(self) -> str:
        return "Unpack initrd"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config = self.config(run_context)
        required_dirs = {
            str(PurePosixPath(config.patch_target).parent),
            str(PurePosixPath(config.status_log).parent),
        } - {"."}

        unpacker = ArchiveUnpacker(
            config.work_dir,
            config.scratch_dir,
            config.warnings_log,
            run_context.get("strategies"),
            required_dirs=sorted(required_dirs),
        )
        report = unpacker.unpack(config.initrd_path)
        return {"unpack": report.model_dump(mode="json")}
