"""Stage 5: Snippet.

Writes the GRUB menu entry that boots the patched image from its
install-time location. Nothing under /etc/grub.d is touched here.
"""

from __future__ import annotations

from typing import Any

from tinycore_audit.core.snippet import ConfigFragment, emit_fragment
from tinycore_audit.stages.base import BaseStage


class SnippetStage(BaseStage):
    """Stage 5: emit the GRUB configuration fragment."""

    prerequisites = ("s4_repack",)

    @property
    def stage_id(self) -> str:
        return "s5_snippet"

    @property
    def display_name(self) -> str:
        return "Emit GRUB snippet"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config = self.config(run_context)
        fragment = ConfigFragment(
            title=config.menu_title,
            kernel_path=config.install_kernel_path,
            initrd_path=config.install_initrd_path,
            kernel_args=config.kernel_args,
        )
        path = emit_fragment(fragment, config.snippet_path)
        return {
            "snippet": {
                "path": str(path),
                "identifier": fragment.identifier,
                "kernel_path": str(fragment.kernel_path),
                "initrd_path": str(fragment.initrd_path),
            }
        }
