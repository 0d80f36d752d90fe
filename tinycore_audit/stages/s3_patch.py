"""Stage 3: Patch.

Overwrites the startup script inside the working tree with the safe
template and, when an auxiliary binary URL is configured, fetches it
best-effort into the tree.
"""

from __future__ import annotations

from typing import Any

from tinycore_audit.core.errors import PatchError
from tinycore_audit.core.fetcher import Fetcher
from tinycore_audit.core.patcher import TreePatcher
from tinycore_audit.models.artifacts import RemoteArtifact
from tinycore_audit.models.reports import Outcome
from tinycore_audit.stages.base import BaseStage


class PatchStage(BaseStage):
    """Stage 3: render the safe startup script into the tree."""

    prerequisites = ("s2_unpack",)

    @property
    def stage_id(self) -> str:
        return "s3_patch"

    @property
    def display_name(self) -> str:
        return "Patch startup script"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config = self.config(run_context)
        patcher = TreePatcher(
            config.work_dir,
            config.patch_target,
            status_log=config.status_log,
            packages=config.aux_packages,
            service_script=config.service_script,
        )

        aux: Outcome | None = None
        if config.aux_binary_url:
            fetcher: Fetcher = run_context.get("fetcher") or Fetcher(
                config.fetch_timeout_seconds, config.optional_fetch_timeout_seconds
            )
            try:
                destination = patcher.prepare_path(config.aux_binary_target)
            except OSError as exc:
                raise PatchError(f"Cannot prepare {config.aux_binary_target}: {exc}") from exc
            aux = fetcher.fetch_optional(
                RemoteArtifact(
                    url=config.aux_binary_url,
                    destination=destination,
                    required=False,
                    executable=True,
                )
            )

        report = patcher.patch(aux_binary=aux)
        return {"patch": report.model_dump(mode="json")}
