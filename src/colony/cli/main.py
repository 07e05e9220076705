"""Main CLI entry point for the colony orchestrator."""

import warnings

import click

from .. import __version__
from .colony import kill, spawn, species, status
from .config import config
from .web import web

# Suppress Pydantic serialization warnings globally for better CLI UX
warnings.filterwarnings("ignore", message=".*Pydantic serializer warnings.*")


@click.group()
@click.version_option(version=__version__, prog_name="colony")
@click.option("--config", "-c", help="Configuration file path")
@click.option("--profile", "-p", help="Configuration profile to use")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
# Configuration override flags
@click.option("--base-port", type=int, help="Override base_port setting")
@click.option("--colony-dir", help="Override colony_dir setting")
@click.option("--supervisor", help="Override supervisor setting (tmux, pm2, process)")
@click.option("--log-level", help="Override log_level setting")
@click.pass_context
def main(
    ctx: click.Context,
    config: str | None,
    profile: str | None,
    verbose: bool,
    quiet: bool,
    json: bool,
    base_port: int | None,
    colony_dir: str | None,
    supervisor: str | None,
    log_level: str | None,
) -> None:
    """Colony - run one instance of the app per branch, side by side.

    Each instance ("organism") is cloned from a branch ("species"), built,
    given its own port and kept running by a process supervisor.

    Commands:
    - species: list branches instances can be spawned from
    - spawn / kill / status: manage instances
    - web: serve the dashboard API
    - config: manage configuration settings
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["profile"] = profile
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["json"] = json

    ctx.obj["cli_overrides"] = {
        "base_port": base_port,
        "colony_dir": colony_dir,
        "supervisor": supervisor,
        "log_level": log_level,
    }
    # Remove None values
    ctx.obj["cli_overrides"] = {
        k: v for k, v in ctx.obj["cli_overrides"].items() if v is not None
    }

    if verbose and quiet:
        raise click.UsageError("Cannot use both --verbose and --quiet options")


main.add_command(species)
main.add_command(spawn)
main.add_command(status)
main.add_command(kill)
main.add_command(config)
main.add_command(web)


if __name__ == "__main__":
    main()
