"""Configuration management commands."""

import warnings

import click

from ..config.loader import ColonyConfig, load_config, save_config
from .utils import format_output, handle_error

# Suppress Pydantic warnings early to prevent CLI noise
warnings.filterwarnings("ignore", message=".*Pydantic serializer warnings.*")


@click.group()
def config() -> None:
    """Manage configuration settings."""
    pass


@config.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Show current configuration."""
    try:
        config_path = ctx.obj.get("config") if ctx.obj else None
        profile = ctx.obj.get("profile") if ctx.obj else None
        cli_overrides = ctx.obj.get("cli_overrides") if ctx.obj else None
        config_obj = load_config(config_path, profile, cli_overrides)
        config_dict = config_obj.model_dump()

        format_output(ctx, {"configuration": config_dict})
    except Exception as e:
        handle_error(f"Failed to load configuration: {e}")


@config.command()
@click.option("--path", help="Custom path for config file")
@click.pass_context
def init(ctx: click.Context, path: str | None) -> None:
    """Initialize configuration file with defaults."""
    try:
        saved_path = save_config(ColonyConfig(), path)

        if not (ctx.obj and ctx.obj.get("quiet")):
            click.echo(f"Configuration initialized at: {saved_path}")

    except Exception as e:
        handle_error(f"Failed to initialize configuration: {e}")


@config.command()
def locations() -> None:
    """Show configuration file search locations."""
    click.echo("Configuration file search locations (in order):")
    for i, location in enumerate(
        ["./colony.yaml", "./colony.yml", "~/.config/colony/config.yaml", "~/.colony.yaml"],
        1,
    ):
        click.echo(f"  {i}. {location}")

    click.echo("\nEnvironment variables:")
    for field in ColonyConfig.model_fields:
        click.echo(f"  COLONY_{field.upper()}")
