"""Read-only inspection commands: ``render-script``, ``snippet``, ``check-script``."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from tinycore_audit.config import AuditSettings
from tinycore_audit.core.patcher import TreePatcher
from tinycore_audit.core.snippet import ConfigFragment
from tinycore_audit.core.template import find_active_violations
from tinycore_audit.models.config import PipelineConfig

console = Console()


def render_script_cmd() -> None:
    """Print the safe startup script exactly as it is written into the image."""
    config = PipelineConfig.from_settings(AuditSettings())
    patcher = TreePatcher(
        config.work_dir,
        config.patch_target,
        status_log=config.status_log,
        packages=config.aux_packages,
        service_script=config.service_script,
    )
    typer.echo(patcher.render(), nl=False)


def snippet_cmd() -> None:
    """Print the GRUB menu entry for the configured install-time paths."""
    config = PipelineConfig.from_settings(AuditSettings())
    fragment = ConfigFragment(
        title=config.menu_title,
        kernel_path=config.install_kernel_path,
        initrd_path=config.install_initrd_path,
        kernel_args=config.kernel_args,
    )
    typer.echo(fragment.render(), nl=False)


def check_script_cmd(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Shell script to scan."),
) -> None:
    """Exit non-zero if *path* contains destructive commands in active form."""
    text = path.read_text(encoding="utf-8", errors="replace")
    violations = find_active_violations(text)
    if not violations:
        console.print(f"[green]{path}: no active destructive commands[/green]")
        return

    table = Table(title=f"Active destructive commands in {path}")
    table.add_column("Line", justify="right")
    table.add_column("Rule", style="red")
    table.add_column("Command")
    for v in violations:
        table.add_row(str(v.lineno), v.rule, v.line)
    console.print(table)
    raise typer.Exit(code=1)
