"""FastAPI dependencies for shared application resources."""

from typing import cast

from fastapi import Request

from ..core.orchestrator import Colony
from .exceptions import ColonyUnavailableError
from .logging_utils import api_logger


async def get_colony(request: Request) -> Colony:
    """Get the colony from application state."""
    colony = getattr(request.app.state, "colony", None)
    if colony is None or not colony.initialized:
        api_logger.error("Colony not available in application state")
        raise ColonyUnavailableError()
    return cast(Colony, colony)
