"""Single-instance lock shared by ``audit`` and ``apply``."""

from __future__ import annotations

import fcntl
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from tinycore_audit.core.errors import PreflightError


@contextmanager
def single_instance(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive flock on *lock_path* for the duration of the block.

    Raises ``PreflightError`` if another process already holds it.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "w", encoding="utf-8") as fh:
        try:
            fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise PreflightError(
                f"Another tinycore-audit process is running (lockfile: {lock_path})"
            ) from None
        try:
            yield
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)
