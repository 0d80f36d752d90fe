"""Stage 4: Repack.

Serializes the patched tree into a new newc archive with the original's
outer compression, next to (never over) the pristine download. The round
trip is verified before the archive takes its final name.
"""

from __future__ import annotations

from functools import partial
from typing import Any

from tinycore_audit.core.compression import Compression
from tinycore_audit.core.extraction import default_strategies
from tinycore_audit.core.repacker import ArchiveRepacker, verify_round_trip
from tinycore_audit.stages.base import BaseStage


class RepackStage(BaseStage):
    """Stage 4: build the patched initrd."""

    prerequisites = ("s3_patch",)

    @property
    def stage_id(self) -> str:
        return "s4_repack"

    @property
    def display_name(self) -> str:
        return "Repack initrd"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config = self.config(run_context)
        unpack = self.prior(run_context, "s2_unpack").get("unpack", {})
        kind = Compression(unpack.get("compression", Compression.GZIP.value))

        verify = None
        if run_context.get("verify", True):
            verify = partial(
                verify_round_trip,
                reference_tree=config.work_dir,
                scratch_dir=config.scratch_dir,
                strategies=run_context.get("strategies") or default_strategies(),
                warnings_log=config.warnings_log,
            )

        repacker = ArchiveRepacker(config.work_dir, config.scratch_dir)
        report = repacker.repack(
            config.patched_initrd_path,
            original=config.initrd_path,
            compression_kind=kind,
            verify=verify,
        )
        return {"repack": report.model_dump(mode="json")}
