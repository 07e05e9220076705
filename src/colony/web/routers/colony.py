"""
Colony API endpoints.

Mounted under ``/api/colony``; these are the paths the dashboard calls.
"""

from typing import Any

from fastapi import APIRouter, Depends

from ...core.orchestrator import Colony
from ..dependencies import get_colony
from ..logging_utils import api_logger, track_api_performance
from ..schemas import InstanceResponse, KillRequest, KillResponse, SpawnRequest

router = APIRouter()


@router.get("/instances", response_model=list[InstanceResponse])
@track_api_performance()
async def list_instances(colony: Colony = Depends(get_colony)) -> list[dict[str, Any]]:
    """List every registered instance with its url."""
    return colony.list_instances()


@router.get("/species", response_model=list[str])
@track_api_performance()
async def list_species(colony: Colony = Depends(get_colony)) -> list[str]:
    """List the species (remote branches) instances can be spawned from."""
    return await colony.list_species()


@router.post("/spawn", response_model=InstanceResponse)
@track_api_performance()
async def spawn_instance(
    request: SpawnRequest, colony: Colony = Depends(get_colony)
) -> dict[str, Any]:
    """Reserve a new instance and start provisioning it in the background."""
    instance = await colony.spawn(request.species, request.name)
    api_logger.info(
        "Spawn accepted", instance=instance.name, species=instance.species, port=instance.port
    )
    return instance.to_public_dict(colony.config.public_host, colony.config.url_scheme)


@router.post("/kill", response_model=KillResponse)
@track_api_performance()
async def kill_instance(
    request: KillRequest, colony: Colony = Depends(get_colony)
) -> KillResponse:
    """Stop an instance and remove it from the registry."""
    await colony.kill(request.name, purge=request.purge)
    return KillResponse(success=True)
