"""CLI command: fortiscan scan <directory>, validate a plugin before install."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from fortiscan.config import PipelineConfig, load_pipeline_config
from fortiscan.exceptions import FortiScanError
from fortiscan.policy.loader import resolve_policy
from fortiscan.scanner.engine import ValidationOrchestrator
from fortiscan.scanner.models import SEVERITY_ORDER, ScanEvent, ScanSummary, Severity, Violation

console = Console(stderr=True)

_SEVERITY_COLORS = {
    Severity.CRITICAL: "red",
    Severity.HIGH: "magenta",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
    Severity.INFO: "white",
}


@click.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--config",
    "-c",
    "pipeline_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Pipeline YAML: headline inputs, token list and fail policy.",
)
@click.option(
    "--ignore-validator",
    "-i",
    multiple=True,
    help="Skip a validator by name (composer, config, host, manifest, route, content, token, ast, ...).",
)
@click.option("--files-only", is_flag=True, help="Skip plugin-level checks; scan files only.")
@click.option("--json", "as_json", is_flag=True, help="Print the full summary as JSON on stdout.")
@click.pass_context
def scan(
    ctx: click.Context,
    directory: str,
    pipeline_path: str | None,
    ignore_validator: tuple[str, ...],
    files_only: bool,
    as_json: bool,
) -> None:
    """Scan a plugin directory for forbidden PHP constructs."""
    config = ctx.obj["config"]
    try:
        policy = resolve_policy(ctx.obj.get("policy_path"), config.policy_dirs)
        pipeline = load_pipeline_config(pipeline_path) if pipeline_path else PipelineConfig()
        orchestrator = ValidationOrchestrator.from_config(policy, pipeline, config)
        orchestrator.set_ignored_validators(ignore_validator)

        if not as_json:
            console.print(
                f"[bold]FortiScan[/bold] scanning [cyan]{directory}[/cyan] "
                f"with policy [cyan]{policy.name}[/cyan]\n"
            )
        sink = _progress if config.verbose else None
        if files_only:
            summary = orchestrator.run_file_scan(directory, on_event=sink)
        else:
            summary = orchestrator.run(directory, on_event=sink)
    except (FortiScanError, ValueError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(_as_json(summary), indent=2, default=str))
    else:
        _print_table(summary.log, directory)
        _print_summary(summary)

    if summary.should_fail:
        sys.exit(1)


def _progress(item: ScanEvent | Violation) -> None:
    if isinstance(item, ScanEvent):
        console.print(f"[dim]{item.title}[/dim] {item.description}")


def _print_table(log: list[Violation], directory: str) -> None:
    if not log:
        console.print("[green]No violations.[/green]")
        return

    # Sort by severity (critical first), then file, then line
    ordered = sorted(log, key=lambda v: (SEVERITY_ORDER.get(v.severity, 9), v.file, v.line))

    table = Table(title="Violations", show_lines=False)
    table.add_column("Severity", style="bold", width=10)
    table.add_column("File", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Type")
    table.add_column("Issue", max_width=60)

    for v in ordered:
        color = _SEVERITY_COLORS.get(v.severity, "white")
        table.add_row(
            f"[{color}]{v.severity.value}[/{color}]",
            _shorten_path(v.file, directory),
            str(v.line),
            v.type,
            v.issue[:60],
        )

    console.print(table)


def _print_summary(summary: ScanSummary) -> None:
    console.print(f"\nScanned {summary.files_scanned} files")
    console.print(f"Total violations: {summary.total_issues}")
    if summary.should_fail:
        console.print(f"\n[red]FAIL[/red] {summary.fail_reason}")
    else:
        console.print("\n[green]PASS[/green]")


def _as_json(summary: ScanSummary) -> dict:
    return {
        "files_scanned": summary.files_scanned,
        "total_issues": summary.total_issues,
        "should_fail": summary.should_fail,
        "fail_reason": summary.fail_reason,
        "violations": summary.extended,
        "formatted": summary.formatted,
    }


def _shorten_path(file_path: str, base_dir: str) -> str:
    """Shorten file path relative to scan directory."""
    base = str(Path(base_dir).resolve())
    if file_path.startswith(base):
        return file_path[len(base) :].lstrip("/")
    return file_path
