"""tinycore-audit: non-destructive staging of a patched TinyCore boot image.

Fetches a known-good kernel and initrd, unpacks the initrd, replaces the
startup script with a safe template, repacks it, and emits a GRUB menu
entry. Installing the result into ``/boot`` is a separate, confirmed step.
"""

__version__ = "0.2.0"

from tinycore_audit.core.orchestrator import AuditOrchestrator
from tinycore_audit.models.config import PipelineConfig

__all__ = ["AuditOrchestrator", "PipelineConfig", "__version__"]
