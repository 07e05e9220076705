"""CLI utilities for output formatting and common functionality."""

import json
import sys
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any

import click

from ..config.loader import ColonyConfig, load_config
from ..utils.logging import ColonyException, setup_logging


class CliError(Exception):
    """Exception for CLI errors."""

    def __init__(self, message: str, exit_code: int = 1):
        """Initialize CLI error.

        Args:
            message: Error message
            exit_code: Exit code for the CLI
        """
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


def error_handler(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator for handling CLI errors."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CliError as e:
            click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
            sys.exit(e.exit_code)
        except ColonyException as e:
            click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
            sys.exit(1)
        except FileNotFoundError as e:
            click.echo(click.style(f"Error: {e}", fg="red"), err=True)
            sys.exit(1)

    return wrapper


def success_message(message: str) -> None:
    """Display a success message."""
    click.echo(click.style(f"✓ {message}", fg="green"))


def output_json(data: Any) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


def output_table(headers: list[str], rows: list[list[str]]) -> None:
    """Output data as a formatted table."""
    if not rows:
        click.echo("No data to display")
        return

    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            if i < len(col_widths):
                col_widths[i] = max(col_widths[i], len(str(cell)))

    header_row = " | ".join(
        h.ljust(w) for h, w in zip(headers, col_widths, strict=False)
    )
    click.echo(header_row)
    click.echo("-" * len(header_row))

    for row in rows:
        formatted_row = " | ".join(
            str(cell).ljust(w) for cell, w in zip(row, col_widths, strict=False)
        )
        click.echo(formatted_row)


def wants_json(ctx: click.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json"))


def verbose_echo(ctx: click.Context, message: str) -> None:
    """Echo message only if verbose mode is enabled."""
    if ctx.obj and ctx.obj.get("verbose"):
        click.echo(click.style(f"[VERBOSE] {message}", fg="blue"), err=True)


def quiet_echo(ctx: click.Context, message: str) -> None:
    """Echo message only if not in quiet mode."""
    if not (ctx.obj and ctx.obj.get("quiet")):
        click.echo(message)


def format_output(
    ctx: click.Context, data: dict[str, Any], human_format_func: Any = None
) -> None:
    """Format output based on context (JSON or human-readable)."""
    if wants_json(ctx):
        output_json(data)
    elif human_format_func:
        human_format_func(data)
    else:
        for key, value in data.items():
            click.echo(f"{key}: {value}")


def load_cli_config(ctx: click.Context) -> ColonyConfig:
    """Load configuration honouring the global CLI options.

    Also sets up logging: warnings only, unless ``--verbose`` or an explicit
    log level asks for more.
    """
    obj = ctx.obj or {}
    config = load_config(obj.get("config"), obj.get("profile"), obj.get("cli_overrides"))

    if obj.get("verbose"):
        level = "DEBUG"
    elif obj.get("quiet"):
        level = "ERROR"
    elif "log_level" in (obj.get("cli_overrides") or {}):
        level = config.log_level
    else:
        level = "WARNING"

    setup_logging(
        log_level=level,
        log_file=Path(config.log_file) if config.log_file else None,
        enable_structured=config.structured_logs,
    )
    verbose_echo(ctx, f"Colony directory: {config.colony_path}")
    return config


def handle_error(message: str, exit_code: int = 1) -> None:
    """Handle errors with consistent formatting."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(exit_code)
