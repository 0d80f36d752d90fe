"""Pipeline orchestrator: runs the audit stages in order.

Fetch -> Unpack -> Patch -> Repack -> Snippet, strictly sequential. The
working root is wiped and recreated at the start of every run so no state
leaks in from an earlier failure. The first fatal error marks the failing
stage FAILED and every later stage BLOCKED, then propagates.

The orchestrator does no locking; callers must keep runs against the
same ``work_root`` from overlapping.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from tinycore_audit.core.errors import AuditError
from tinycore_audit.core.extraction import ExtractionStrategy
from tinycore_audit.core.fetcher import Fetcher
from tinycore_audit.core.hasher import content_address
from tinycore_audit.models.artifacts import ArtifactRef, ArtifactSet
from tinycore_audit.models.config import PipelineConfig
from tinycore_audit.models.stages import VALID_TRANSITIONS, StageState
from tinycore_audit.stages import STAGE_ORDER, get_stage

logger = logging.getLogger(__name__)

# (stage_id, display_name, new_state, result_or_None, error_or_None)
StageListener = Callable[[str, str, StageState, "dict[str, Any] | None", "Exception | None"], None]


class AuditOrchestrator:
    """Central coordinator for one audit run.

    Parameters
    ----------
    config:
        Explicit paths, URLs and patch parameters for the run.
    fetcher:
        Overrides the default ``Fetcher`` (tests, custom openers).
    strategies:
        Extraction backends in preference order; defaults to bsdtar, cpio.
    verify:
        Re-extract the repacked archive and compare file digests.
    listener:
        Called on every stage state change, for progress display.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        fetcher: Fetcher | None = None,
        strategies: Sequence[ExtractionStrategy] | None = None,
        verify: bool = True,
        listener: StageListener | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self._listener = listener
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.run_id = f"tca-{ts}"
        self.run_context: dict[str, Any] = {
            "run_id": self.run_id,
            "config": self.config,
            "fetcher": fetcher,
            "strategies": list(strategies) if strategies is not None else None,
            "verify": verify,
            "stage_states": {},
            "stage_results": {},
        }

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def start_run(self) -> None:
        """Destroy and recreate the working root; reset all stage states."""
        root = self.config.work_root
        if root.is_symlink():
            root.unlink()
        elif root.exists():
            shutil.rmtree(root)
        self.config.work_dir.mkdir(parents=True)
        self.config.out_dir.mkdir(parents=True)
        logger.info("Prepared work folders under %s", root)

        self.run_context["stage_states"] = {sid: StageState.NOT_STARTED for sid in STAGE_ORDER}
        self.run_context["stage_results"] = {}
        self.run_context["history"] = []

    def run(self) -> ArtifactSet:
        """Run every stage and return the produced artifacts."""
        self.start_run()
        for stage_id in STAGE_ORDER:
            self.execute_stage(stage_id)
        return self.artifacts()

    def execute_stage(self, stage_id: str) -> dict[str, Any]:
        """Run one stage, tracking its state and blocking successors on failure."""
        stage = get_stage(stage_id)
        self._transition(stage_id, stage.display_name, StageState.RUNNING)
        try:
            result = stage.run_stage(self.run_context)
        except AuditError as exc:
            self._transition(stage_id, stage.display_name, StageState.FAILED, error=exc)
            self._block_after(stage_id)
            raise
        self._transition(stage_id, stage.display_name, StageState.PASSED, result=result)
        return result

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[str, StageState]:
        return dict(self.run_context["stage_states"])

    def get_result(self, stage_id: str) -> dict[str, Any]:
        return self.run_context["stage_results"].get(stage_id, {})

    def artifacts(self) -> ArtifactSet:
        """Inventory of the output directory after a successful run."""
        config = self.config

        def ref(path) -> ArtifactRef:
            return ArtifactRef(
                name=path.name,
                path=path,
                content_address=content_address(path),
                size_bytes=path.stat().st_size,
            )

        return ArtifactSet(
            kernel=ref(config.kernel_path),
            original_initrd=ref(config.initrd_path),
            patched_initrd=ref(config.patched_initrd_path),
            snippet=ref(config.snippet_path),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(
        self,
        stage_id: str,
        display_name: str,
        target: StageState,
        *,
        result: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        states: dict[str, StageState] = self.run_context["stage_states"]
        current = states.get(stage_id, StageState.NOT_STARTED)
        if target not in VALID_TRANSITIONS[current]:
            raise RuntimeError(
                f"Cannot transition {stage_id} from {current.value} to {target.value}"
            )
        states[stage_id] = target
        if self._listener is not None:
            self._listener(stage_id, display_name, target, result, error)

    def _block_after(self, failed_stage_id: str) -> None:
        later = STAGE_ORDER[STAGE_ORDER.index(failed_stage_id) + 1:]
        for stage_id in later:
            if self.run_context["stage_states"].get(stage_id) is StageState.NOT_STARTED:
                self._transition(stage_id, get_stage(stage_id).display_name, StageState.BLOCKED)
