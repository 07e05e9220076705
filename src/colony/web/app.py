"""FastAPI web application exposing the colony API."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config.loader import ColonyConfig, load_config
from ..core.orchestrator import Colony
from ..utils.logging import ColonyException
from .exceptions import ColonyAPIException, status_code_for
from .logging_utils import api_logger
from .middleware import RequestTrackingMiddleware
from .routers import colony_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the colony with the server and shut it down on exit."""
    api_logger.info("Starting colony API server")

    colony: Colony | None = getattr(app.state, "colony", None)
    if colony is None:
        colony = Colony(app.state.config)
        app.state.colony = colony

    # A colony handed in already started belongs to the caller.
    owns_colony = not colony.initialized
    if owns_colony:
        await colony.start()

    api_logger.info("Colony API server started successfully")

    yield

    api_logger.info("Shutting down colony API server")
    if owns_colony:
        await colony.shutdown()
    api_logger.info("Colony API server shutdown complete")


def _error_response(error: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "status_code": status_code},
    )


def create_app(colony: Colony | None = None, config: ColonyConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        colony: Colony to serve; built from *config* at startup when None
        config: Configuration; loaded from the usual sources when None
    """
    if config is None:
        config = colony.config if colony is not None else load_config()

    app = FastAPI(
        title="Colony API",
        description="Provision and manage one running instance per species branch",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    if colony is not None:
        app.state.colony = colony

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
    )
    app.add_middleware(RequestTrackingMiddleware)

    @app.exception_handler(ColonyException)
    async def colony_exception_handler(request: Request, exc: ColonyException) -> JSONResponse:
        """Map core errors onto HTTP status codes."""
        status_code = status_code_for(exc)
        if status_code >= 500:
            api_logger.error(
                "Request failed", exception=exc, path=str(request.url.path)
            )
        return _error_response(exc.__class__.__name__, exc.message, status_code)

    @app.exception_handler(ColonyAPIException)
    async def api_exception_handler(request: Request, exc: ColonyAPIException) -> JSONResponse:
        """Handle custom API exceptions."""
        return _error_response(exc.__class__.__name__, exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies are client errors (400)."""
        details = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        )
        return _error_response("ValidationError", details or "Invalid request", 400)

    app.include_router(colony_router, prefix="/api/colony")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/ping")
    async def ping() -> dict[str, str]:
        """Ping endpoint for simple health check."""
        return {"status": "ok"}

    return app
