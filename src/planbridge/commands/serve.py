"""planbridge serve — run the HTTP/SSE service."""

from __future__ import annotations

from pathlib import Path

import click
import uvicorn

from planbridge.config.parser import ConfigError, load_config
from planbridge.helpers import configure_logging
from planbridge.server.app import create_app


@click.command()
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option("--host", type=str, default=None, help="Bind address (overrides config).")
@click.option("--port", type=int, default=None, help="Bind port (overrides config).")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def serve(
    config_file: str | None,
    host: str | None,
    port: int | None,
    verbose: bool,
) -> None:
    """Serve POST /api/claude/stream and GET /api/health."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    configure_logging(verbose)
    host = host or config.server.host
    port = port or config.server.port
    click.echo(f"planbridge listening on http://{host}:{port}", err=True)
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        log_level="debug" if verbose else "info",
    )
