"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only
``execute()``. The ``run_stage()`` wrapper is **not overridable** and
enforces the ordering:

    validate_prerequisites -> announce -> execute -> fingerprint -> record

Typed ``AuditError`` subclasses propagate unchanged so callers can map
them to a reason; anything else is wrapped in ``StageExecutionError``.
"""

from __future__ import annotations

import abc
import logging
from datetime import datetime, timezone
from typing import Any, final

from tinycore_audit.core.errors import AuditError, StageExecutionError, StagePrerequisiteError
from tinycore_audit.core.hasher import fingerprint
from tinycore_audit.models.config import PipelineConfig
from tinycore_audit.models.stages import StageState

logger = logging.getLogger(__name__)


class BaseStage(abc.ABC):
    """Abstract base for the audit pipeline stages.

    Subclasses **must** implement:
        * ``stage_id``    : unique identifier (e.g. ``"s2_unpack"``).
        * ``display_name``: human-readable name used in announcements.
        * ``execute(run_context)``: the stage's core logic.

    ``run_context`` carries ``config`` (a ``PipelineConfig``),
    ``stage_states``, ``stage_results``, and optional component overrides
    (``fetcher``, ``strategies``).
    """

    prerequisites: tuple[str, ...] = ()

    @property
    @abc.abstractmethod
    def stage_id(self) -> str:
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        ...

    @abc.abstractmethod
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Run the stage and return a JSON-serializable result dict."""
        ...

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def run_stage(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the full stage lifecycle.  **Do not override.**

        Returns the result of ``execute()`` augmented with
        ``_fingerprint`` (sha256 of the canonical result).
        """
        self.validate_prerequisites(run_context)
        logger.info("%s [%s] started", self.display_name, self.stage_id)

        try:
            result = self.execute(run_context)
        except AuditError as exc:
            logger.error("%s [%s] failed: %s", self.display_name, self.stage_id, exc)
            raise
        except Exception as exc:
            logger.error("%s [%s] failed unexpectedly: %s", self.display_name, self.stage_id, exc)
            raise StageExecutionError(f"Stage {self.stage_id} failed: {exc}") from exc

        digest = fingerprint(
            self.stage_id, {k: v for k, v in result.items() if not k.startswith("_")}
        )
        self._record(run_context, result, digest)
        result["_fingerprint"] = digest
        return result

    @final
    def validate_prerequisites(self, run_context: dict[str, Any]) -> None:
        """Ensure every prerequisite stage has PASSED in this run."""
        stage_states: dict[str, StageState] = run_context.get("stage_states", {})
        blocking = [
            f"{prereq} is {stage_states.get(prereq, StageState.NOT_STARTED).value}"
            for prereq in self.prerequisites
            if stage_states.get(prereq, StageState.NOT_STARTED) is not StageState.PASSED
        ]
        if blocking:
            raise StagePrerequisiteError(
                f"Cannot run {self.stage_id}: prerequisites not met: " + "; ".join(blocking)
            )

    @final
    def _record(self, run_context: dict[str, Any], result: dict[str, Any], digest: str) -> None:
        run_context.setdefault("stage_results", {})[self.stage_id] = result
        run_context.setdefault("history", []).append(
            {
                "stage_id": self.stage_id,
                "fingerprint": digest,
                "finished_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        logger.info("%s [%s] passed (fingerprint %s)", self.display_name, self.stage_id, digest[:12])

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    @staticmethod
    def config(run_context: dict[str, Any]) -> PipelineConfig:
        return run_context["config"]

    @staticmethod
    def prior(run_context: dict[str, Any], stage_id: str) -> dict[str, Any]:
        return run_context.get("stage_results", {}).get(stage_id, {})

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage_id={self.stage_id!r}>"
