"""Instance management commands: species, spawn, status, kill."""

import asyncio
from typing import Any

import click

from ..core.enums import InstanceStatus
from ..core.orchestrator import Colony
from ..utils.logging import LogContext, get_logger
from .utils import (
    CliError,
    error_handler,
    load_cli_config,
    output_json,
    output_table,
    quiet_echo,
    success_message,
    wants_json,
)

logger = get_logger(__name__, LogContext.CLI)


@click.command()
@click.pass_context
@error_handler
def species(ctx: click.Context) -> None:
    """List available species (remote branches)."""
    config = load_cli_config(ctx)

    async def _species() -> list[str]:
        colony = Colony(config)
        return await colony.list_species()

    names = asyncio.run(_species())

    if wants_json(ctx):
        output_json({"species": names})
        return
    if not names:
        click.echo("No species found.")
        return
    click.echo("Available species:")
    for name in names:
        click.echo(f"  - {name}")


@click.command()
@click.argument("species_name", metavar="SPECIES")
@click.argument("name")
@click.pass_context
@error_handler
def spawn(ctx: click.Context, species_name: str, name: str) -> None:
    """Spawn instance NAME from SPECIES and wait until it is running."""
    config = load_cli_config(ctx)

    async def _spawn() -> dict[str, Any] | None:
        colony = Colony(config)
        await colony.start()
        try:
            instance = await colony.spawn(species_name, name)
            quiet_echo(
                ctx,
                f"Spawning {instance.name} from {instance.species} on port {instance.port}...",
            )
            final = await colony.wait(instance.name)
        finally:
            await colony.shutdown()
        if final is None:
            return None
        return final.to_public_dict(config.public_host, config.url_scheme)

    result = asyncio.run(_spawn())
    if result is None:
        raise CliError(f"Instance '{name}' disappeared while provisioning")

    if wants_json(ctx):
        output_json(result)
    if result["status"] != InstanceStatus.RUNNING.value:
        raise CliError(f"Failed to spawn {name}: {result.get('error') or result['status']}")
    if not wants_json(ctx):
        success_message(f"{name} is running at {result['url']}")
        quiet_echo(ctx, f"  Species: {result['species']}")
        quiet_echo(ctx, f"  Port: {result['port']}")
        quiet_echo(ctx, f"  Path: {result['path']}")


@click.command()
@click.pass_context
@error_handler
def status(ctx: click.Context) -> None:
    """Show every registered instance and whether its process is alive."""
    config = load_cli_config(ctx)

    async def _status() -> tuple[list[dict[str, Any]], dict[str, bool]]:
        colony = Colony(config)
        # Read-only: works next to a running server.
        await colony.start(exclusive=False, reconcile=False)
        return colony.list_instances(), await colony.process_states()

    instances, states = asyncio.run(_status())
    for instance in instances:
        instance["process_running"] = states.get(instance["name"], False)

    if wants_json(ctx):
        output_json({"instances": instances, "total": len(instances)})
        return

    click.echo(f"\nColony status ({len(instances)} instances):\n")
    if not instances:
        click.echo("The colony is empty.")
        return
    output_table(
        ["Name", "Species", "Port", "Status", "Stage", "Process", "URL"],
        [
            [
                instance["name"],
                instance["species"],
                str(instance["port"]),
                instance["status"],
                instance["stage"] or "-",
                "up" if instance["process_running"] else "down",
                instance["url"],
            ]
            for instance in instances
        ],
    )
    for instance in instances:
        if instance["error"]:
            click.echo(click.style(f"{instance['name']}: {instance['error']}", fg="red"))


@click.command()
@click.argument("name")
@click.option("--purge", is_flag=True, help="Delete the instance files too")
@click.pass_context
@error_handler
def kill(ctx: click.Context, name: str, purge: bool) -> None:
    """Stop instance NAME and remove it from the registry."""
    config = load_cli_config(ctx)

    async def _kill() -> None:
        colony = Colony(config)
        await colony.start()
        try:
            # Without --purge the configured purge_on_kill applies.
            await colony.kill(name, purge=True if purge else None)
        finally:
            await colony.shutdown()

    asyncio.run(_kill())

    if wants_json(ctx):
        output_json({"success": True, "name": name})
    else:
        success_message(f"{name} killed")
