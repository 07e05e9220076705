"""Web interface commands."""

import click

from .utils import error_handler, load_cli_config


@click.group()
def web() -> None:
    """Manage the web interface."""
    pass


@web.command()
@click.option("--port", "-p", type=int, help="Port to run on (default: web_port)")
@click.option("--host", "-h", help="Host to bind to (default: web_host)")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.pass_context
@error_handler
def start(ctx: click.Context, port: int | None, host: str | None, reload: bool) -> None:
    """Start the web interface."""
    from ..web.server import run_server

    config = load_cli_config(ctx)
    click.echo(
        f"Starting colony web interface on {host or config.web_host}:{port or config.web_port}"
    )
    if reload:
        click.echo("Development mode: auto-reload enabled")

    try:
        run_server(config=config, host=host, port=port, reload=reload)
    except KeyboardInterrupt:
        click.echo("\nShutting down web interface...")
