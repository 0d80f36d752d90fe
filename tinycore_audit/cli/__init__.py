"""tinycore-audit CLI: Typer-based command-line interface.

Provides the ``tinycore-audit`` command with subcommands for running the
safe audit pipeline, applying its artifacts, and inspecting the safe
startup script and GRUB fragment.

All output uses Rich for formatted terminal display.
"""
