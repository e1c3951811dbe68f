"""planbridge check — verify the Claude CLI is installed and runnable."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from planbridge.config.parser import ConfigError, load_config
from planbridge.errors import classify_cli_error, format_error_for_display
from planbridge.health import CLIChecker


@click.command()
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
def check(config_file: str | None) -> None:
    """Run `<binary> --version` and report the result."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    checker = CLIChecker(config.cli.binary)
    result = asyncio.run(checker.check(force=True))
    if result.available:
        click.echo(f"{config.cli.binary}: {result.version}")
        return

    info = classify_cli_error(result.error or "")
    click.echo(f"Error: {result.error}", err=True)
    click.echo(format_error_for_display(info), err=True)
    raise SystemExit(1)
