"""CLI commands that inspect the rule set: fortiscan policy and fortiscan catalog."""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.table import Table

from fortiscan.catalog import list_known_violations
from fortiscan.policy.loader import resolve_policy

console = Console(stderr=True)


@click.command()
@click.pass_context
def policy(ctx: click.Context) -> None:
    """Show a summary of the effective policy."""
    config = ctx.obj["config"]
    try:
        view = resolve_policy(ctx.obj.get("policy_path"), config.policy_dirs)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)

    console.print(f"[bold]Policy:[/bold] {view.name}")
    if view.description:
        console.print(f"[dim]{view.description}[/dim]")

    table = Table(title="Rule sets", show_lines=False)
    table.add_column("List", style="cyan")
    table.add_column("Entries", justify="right")
    table.add_column("Sample", max_width=60)

    rows = [
        ("forbidden functions", view.forbidden_functions),
        ("unsupported functions", view.unsupported_functions),
        ("dangerous functions", view.dangerous_functions),
        ("risky functions", view.risky_functions),
        ("obfuscators", view.obfuscators),
        ("callback functions", view.callback_functions),
        ("forbidden namespaces", view.forbidden_namespaces),
        ("forbidden packages", view.forbidden_packages),
        ("magic methods", view.magic_methods),
        ("stream wrappers", view.wrappers),
        ("allowed class methods", tuple(view.allowed_class_methods)),
    ]
    for label, entries in rows:
        sample = ", ".join(sorted(entries)[:6])
        table.add_row(label, str(len(entries)), sample)
    console.print(table)

    limits = view.limits
    console.print(
        f"\nPHP extensions: {', '.join(limits.php_extensions)}"
        f"\nWeb file limit: {limits.max_web_file_bytes} bytes"
        f"\nShort open tags: {'on' if limits.short_open_tags else 'off'}"
    )


@click.command()
def catalog() -> None:
    """List every known violation type."""
    table = Table(title="Violation catalog", show_lines=False)
    table.add_column("Type", style="cyan")
    table.add_column("Name")
    table.add_column("Severity", width=10)
    table.add_column("Description", max_width=60)

    for slug, entry in list_known_violations():
        table.add_row(slug, entry.name, entry.severity.value, entry.description)
    console.print(table)
