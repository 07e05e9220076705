"""API routers for the colony web interface."""

from .colony import router as colony_router

__all__ = ["colony_router"]
