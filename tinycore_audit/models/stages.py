"""Stage state model for the sequential audit pipeline.

Stage identity, order and prerequisites live on the stage classes in
``tinycore_audit.stages``.
"""

from __future__ import annotations

from enum import Enum


class StageState(str, Enum):
    """State of one pipeline stage within a run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    BLOCKED = "blocked"
    FAILED = "failed"
    PASSED = "passed"


# Terminal states (PASSED, FAILED, BLOCKED) have no outgoing transitions;
# a new run starts from a fresh state map.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.BLOCKED},
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.BLOCKED: set(),
    StageState.FAILED: set(),
    StageState.PASSED: set(),
}

