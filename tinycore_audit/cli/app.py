"""Main Typer application: imports and registers all CLI commands.

Entry point: ``tinycore-audit`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from tinycore_audit.cli.commands.apply import apply_cmd
from tinycore_audit.cli.commands.audit import audit_cmd
from tinycore_audit.cli.commands.inspect import check_script_cmd, render_script_cmd, snippet_cmd
from tinycore_audit.config import AuditSettings
from tinycore_audit.log import configure_logging

app = typer.Typer(
    name="tinycore-audit",
    help="Stage a safe, patched TinyCore kernel/initrd and GRUB entry without touching /boot.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging once for every subcommand."""
    settings = AuditSettings()
    configure_logging("DEBUG" if verbose or settings.debug else settings.log_level)


app.command(name="audit", help="Fetch, unpack, patch and repack the initrd; emit a GRUB snippet.")(audit_cmd)
app.command(name="apply", help="Install audited artifacts into /boot and register the GRUB entry.")(apply_cmd)
app.command(name="render-script", help="Print the safe startup script.")(render_script_cmd)
app.command(name="snippet", help="Print the GRUB menu entry for the install-time paths.")(snippet_cmd)
app.command(name="check-script", help="Scan a shell script for active destructive commands.")(check_script_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
