"""``tinycore-audit audit``: run the non-destructive audit pipeline.

Downloads the kernel and initrd, swaps the startup script for the safe
template, repacks the initrd, and writes a GRUB snippet. Everything lands
under the work root; /boot and /etc/grub.d are never touched.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tinycore_audit.cli.lock import single_instance
from tinycore_audit.config import AuditSettings
from tinycore_audit.core.errors import AuditError
from tinycore_audit.core.orchestrator import AuditOrchestrator
from tinycore_audit.core.preflight import run_preflight
from tinycore_audit.models.artifacts import ArtifactSet
from tinycore_audit.models.config import PipelineConfig
from tinycore_audit.models.stages import StageState
from tinycore_audit.stages import STAGE_ORDER

console = Console()
err_console = Console(stderr=True)


def _announce(
    stage_id: str,
    display_name: str,
    state: StageState,
    result: dict[str, Any] | None,
    error: Exception | None,
) -> None:
    step = f"[{STAGE_ORDER.index(stage_id) + 1}/{len(STAGE_ORDER)}]"
    if state is StageState.RUNNING:
        console.print(f"[bold cyan]{step} {display_name} ...[/bold cyan]")
    elif state is StageState.PASSED:
        console.print(f"    [green]done[/green] {_summary(stage_id, result or {})}")
        unpack = (result or {}).get("unpack", {})
        if unpack.get("status") == "partial":
            console.print(
                f"    [yellow]warning:[/yellow] {unpack.get('strategy')} reported errors "
                f"(likely device-node mknod failures); continuing. "
                f"See {unpack.get('warnings_log')}"
            )
        aux = (result or {}).get("patch", {}).get("aux_binary")
        if aux and not aux.get("ok"):
            console.print(f"    [yellow]warning:[/yellow] auxiliary binary skipped: {aux.get('detail')}")
    elif state is StageState.FAILED:
        err_console.print(f"    [bold red]failed:[/bold red] {error}")
    elif state is StageState.BLOCKED:
        console.print(f"[dim]{step} {display_name}: skipped[/dim]")


def _summary(stage_id: str, result: dict[str, Any]) -> str:
    if stage_id == "s1_fetch":
        return ", ".join(
            f"{name} ({info['size_bytes']} bytes)" for name, info in result.get("downloads", {}).items()
        )
    if stage_id == "s2_unpack":
        unpack = result.get("unpack", {})
        return f"{unpack.get('entry_count')} entries via {unpack.get('strategy')} ({unpack.get('compression')})"
    if stage_id == "s3_patch":
        patch = result.get("patch", {})
        return f"{patch.get('target')} (template v{patch.get('template_version')})"
    if stage_id == "s4_repack":
        repack = result.get("repack", {})
        return f"{repack.get('entry_count')} entries, {repack.get('verified_files')} files verified"
    if stage_id == "s5_snippet":
        return result.get("snippet", {}).get("path", "")
    return ""


def _print_inventory(artifacts: ArtifactSet, config: PipelineConfig) -> None:
    table = Table(title="Artifacts")
    table.add_column("Artifact", style="cyan")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    table.add_column("SHA-256", style="dim")
    labels = ("Kernel", "Initrd (orig)", "Initrd (safe)", "GRUB snippet")
    for label, ref in zip(labels, artifacts.as_list()):
        table.add_row(label, str(ref.path), str(ref.size_bytes), ref.content_address[7:23])

    console.print()
    console.print(table)
    console.print(
        Panel(
            "\n".join([
                "[bold green]SAFE audit complete.[/bold green]",
                "",
                "Next steps (manual):",
                f"  1) Review '{config.work_root}' contents.",
                f"  2) If acceptable, run: sudo tinycore-audit apply --source-dir {config.out_dir}",
                "  3) Reboot and test.",
            ]),
            title="[bold]tinycore-audit[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )


def audit_cmd(
    work_root: Optional[Path] = typer.Option(
        None, "--work-root", "-w", help="Working root (default from TINYCORE_AUDIT_WORK_ROOT)."
    ),
    tce_version: Optional[str] = typer.Option(None, "--version", help="TinyCore release, e.g. 14.x."),
    arch: Optional[str] = typer.Option(None, "--arch", help="Release architecture."),
    mirror: Optional[str] = typer.Option(None, "--mirror", help="Mirror base URL."),
    install_dir: Optional[Path] = typer.Option(
        None, "--install-dir", help="Boot directory the GRUB snippet points at."
    ),
    aux_binary_url: Optional[str] = typer.Option(
        None, "--aux-binary-url", help="Optional binary fetched best-effort into srv/busybox."
    ),
    install_deps: bool = typer.Option(
        True,
        "--install-deps/--no-install-deps",
        help="Install cpio/libarchive-tools with apt-get first (requires root).",
    ),
    verify: bool = typer.Option(
        True, "--verify/--no-verify", help="Re-extract the repacked initrd and compare digests."
    ),
) -> None:
    """Run the safe auditor: no writes outside the work root."""
    settings = AuditSettings()
    try:
        config = PipelineConfig.from_settings(
            settings,
            work_root=work_root,
            tce_version=tce_version,
            arch=arch,
            mirror=mirror,
            install_dir=install_dir,
            aux_binary_url=aux_binary_url,
        )
    except ValueError as exc:
        err_console.print(f"[bold red]Invalid configuration:[/bold red] {exc}")
        raise typer.Exit(code=2)

    try:
        with single_instance(config.lock_path):
            console.print("[bold cyan]Pre-flight checks...[/bold cyan]")
            run_preflight(install_deps=install_deps)
            orchestrator = AuditOrchestrator(config, verify=verify, listener=_announce)
            artifacts = orchestrator.run()
    except AuditError as exc:
        err_console.print(f"[bold red]Audit failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    _print_inventory(artifacts, config)
