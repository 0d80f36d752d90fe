"""Stage 1: Fetch.

Downloads the kernel and initrd from the configured mirror into the
output directory. Both are required: an empty or missing file aborts the
run before anything is extracted. A configured ``gz_link`` is recorded in
the result for the operator and never downloaded.
"""

from __future__ import annotations

from typing import Any

from tinycore_audit.core.fetcher import Fetcher
from tinycore_audit.core.hasher import content_address
from tinycore_audit.models.artifacts import RemoteArtifact
from tinycore_audit.stages.base import BaseStage


class FetchStage(BaseStage):
    """Stage 1: retrieve the required kernel and initrd."""

    @property
    def stage_id(self) -> str:
        return "s1_fetch"

    @property
    def display_name(self) -> str:
        return "Fetch kernel and initrd"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config = self.config(run_context)
        fetcher: Fetcher = run_context.get("fetcher") or Fetcher(
            config.fetch_timeout_seconds, config.optional_fetch_timeout_seconds
        )

        artifacts = [
            RemoteArtifact(url=config.kernel_url, destination=config.kernel_path),
            RemoteArtifact(url=config.initrd_url, destination=config.initrd_path),
        ]
        paths = fetcher.fetch_all(artifacts)

        return {
            "downloads": {
                artifact.name: {
                    "url": artifact.url,
                    "path": str(path),
                    "content_address": content_address(path),
                    "size_bytes": path.stat().st_size,
                }
                for artifact, path in zip(artifacts, paths)
            },
            "gz_link": config.gz_link or None,
        }
