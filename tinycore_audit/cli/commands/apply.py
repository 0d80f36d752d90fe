"""``tinycore-audit apply``: install audited artifacts (privileged).

Backs up anything it replaces, copies the kernel and patched initrd into
the install dir, appends the guarded GRUB entry if its title is not yet
present, and regenerates the GRUB configuration. Every destructive step
asks first unless ``--yes`` is given.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from tinycore_audit.cli.lock import single_instance
from tinycore_audit.config import AuditSettings
from tinycore_audit.core.errors import AuditError, InstallAborted, PreflightError
from tinycore_audit.core.installer import Installer
from tinycore_audit.core.preflight import is_root
from tinycore_audit.models.config import PipelineConfig

console = Console()
err_console = Console(stderr=True)


def apply_cmd(
    source_dir: Optional[Path] = typer.Option(
        None,
        "--source-dir",
        "-s",
        help="Directory with the kernel, patched initrd and snippet (default: <work root>/out).",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Non-interactive; assume yes for prompts."),
    install_dir: Optional[Path] = typer.Option(
        None, "--install-dir", help="Live boot directory; must match the one the audit used."
    ),
    grub_custom: Optional[Path] = typer.Option(None, "--grub-custom", help="Custom GRUB script."),
) -> None:
    """Safely install the audited kernel/initrd and add a GRUB entry."""
    settings = AuditSettings()
    try:
        config = PipelineConfig.from_settings(settings, install_dir=install_dir)
    except ValueError as exc:
        err_console.print(f"[bold red]Invalid configuration:[/bold red] {exc}")
        raise typer.Exit(code=2)
    source = source_dir or config.out_dir
    custom = grub_custom or settings.grub_custom
    non_interactive = yes or settings.non_interactive

    console.print(f"Source dir: {source}")
    console.print(f"Dest dir:   {config.install_dir}")
    console.print()

    installer = Installer(
        config.install_dir,
        custom,
        config.menu_title,
        confirm=lambda prompt: typer.confirm(prompt, default=False),
        non_interactive=non_interactive,
    )

    try:
        if not is_root():
            raise PreflightError("Please run as root: sudo tinycore-audit apply")
        with single_instance(config.lock_path):
            report = installer.install(
                source / config.kernel_name,
                source / config.patched_initrd_name,
                source / config.snippet_name,
            )
    except InstallAborted as exc:
        err_console.print(f"[yellow]{exc}[/yellow]")
        raise typer.Exit(code=1)
    except AuditError as exc:
        err_console.print(f"[bold red]Apply failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    lines = ["[bold green]Kernel/initrd installed.[/bold green]", ""]
    lines += [f"  installed {path}" for path in report.installed]
    lines += [f"  backup    {path}" for path in report.backups]
    if report.fragment_skipped:
        lines += ["", "[yellow]Skipped GRUB append; GRUB was not regenerated.[/yellow]"]
    else:
        state = "appended" if report.fragment_inserted else "already present"
        lines += ["", f"GRUB entry {state}; regenerated with {report.regenerated_with}."]
        lines += [f"Reboot to test the new '{config.menu_title}' entry."]
    lines += [f"[dim]Roll back using backups with suffix {report.backup_suffix}.[/dim]"]

    console.print(
        Panel("\n".join(lines), title="[bold]tinycore-audit apply[/bold]", border_style="green")
    )
