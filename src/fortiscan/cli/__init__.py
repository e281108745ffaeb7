"""CLI entry point: Click group with global options."""

from __future__ import annotations

import logging

import click

from fortiscan import __version__
from fortiscan.config import FortiScanConfig


@click.group()
@click.version_option(version=__version__, prog_name="fortiscan")
@click.option(
    "--policy",
    "-p",
    help="Policy YAML file, policy name, or preset:<name>.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, policy: str | None, verbose: bool) -> None:
    """FortiScan: pre-install security scanning for PHP plugin packages."""
    config = FortiScanConfig.load()
    config.verbose = verbose

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["policy_path"] = policy or config.policy_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from fortiscan.cli.policy import catalog, policy  # noqa: F811
    from fortiscan.cli.scan import scan  # noqa: F811

    main.add_command(scan)
    main.add_command(policy)
    main.add_command(catalog)


_register_commands()
