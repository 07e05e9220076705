"""Pydantic schemas for API request/response validation."""

from pydantic import BaseModel, Field

from ..core.enums import InstanceStatus, PipelineStage

__all__ = [
    "InstanceResponse",
    "KillRequest",
    "KillResponse",
    "SpawnRequest",
]


class SpawnRequest(BaseModel):
    """Body of ``POST /spawn``.

    Fields are optional here so that a missing field is reported by the
    colony's own validation with a readable message.
    """

    species: str | None = Field(default=None, description="Branch to provision from")
    name: str | None = Field(default=None, description="Unique instance name")


class KillRequest(BaseModel):
    """Body of ``POST /kill``."""

    name: str | None = None
    purge: bool | None = Field(
        default=None, description="Delete the instance files too (server default if omitted)"
    )


class KillResponse(BaseModel):
    """Result of a successful kill."""

    success: bool = True


class InstanceResponse(BaseModel):
    """A registry entry as seen by API clients."""

    name: str
    species: str
    port: int
    path: str
    created: str
    status: InstanceStatus
    stage: PipelineStage | None = None
    error: str | None = None
    url: str
