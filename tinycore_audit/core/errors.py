"""Error taxonomy for the audit pipeline and the install step.

Every fatal condition raises a subclass of ``AuditError``. Tolerated
conditions (device-node extraction failures, optional downloads) are
logged as warnings and never raised.
"""

from __future__ import annotations


class AuditError(RuntimeError):
    """Base class for all fatal pipeline errors."""

    stage: str = ""


class PreflightError(AuditError):
    """Missing privilege or essential tool. Raised before any mutation."""

    stage = "preflight"


class DownloadError(AuditError):
    """A required artifact is missing or empty after retrieval."""

    stage = "s1_fetch"


class UnpackError(AuditError):
    """No extraction backend is usable, or the extracted tree is empty."""

    stage = "s2_unpack"


class PatchError(AuditError):
    """The safe startup script could not be written into the tree."""

    stage = "s3_patch"


class RepackError(AuditError):
    """The archive tool failed or the repacked archive did not verify."""

    stage = "s4_repack"


class SnippetError(AuditError):
    """The GRUB fragment could not be written."""

    stage = "s5_snippet"


class InstallError(AuditError):
    """The privileged apply step failed.

    Existing files were backed up before being replaced; the message says
    which suffix to look for.
    """

    stage = "install"


class InstallAborted(InstallError):
    """The operator declined a confirmation prompt."""


class StagePrerequisiteError(AuditError):
    """A stage was started before its prerequisites passed."""


class StageExecutionError(AuditError):
    """A stage raised something other than an ``AuditError``."""
