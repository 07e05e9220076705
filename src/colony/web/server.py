"""
Web server startup for the colony API.

Provides utilities for starting the FastAPI server with proper configuration.
"""

from typing import Any

import uvicorn

from ..config.loader import ColonyConfig, load_config
from ..utils.logging import LogContext, get_logger
from .app import create_app

logger = get_logger(__name__, LogContext.WEB)


def get_server_config(config: ColonyConfig) -> dict[str, Any]:
    """Server settings derived from the colony configuration."""
    return {
        "host": config.web_host,
        "port": config.web_port,
        "reload": False,
        "log_level": config.log_level.lower(),
    }


def run_server(
    config: ColonyConfig | None = None,
    host: str | None = None,
    port: int | None = None,
    reload: bool | None = None,
    log_level: str | None = None,
) -> None:
    """
    Run the FastAPI server with specified or default configuration.

    Args:
        config: Colony configuration (loaded from the usual sources if None)
        host: Host to bind to (overrides config)
        port: Port to bind to (overrides config)
        reload: Enable auto-reload (overrides config)
        log_level: Log level (overrides config)
    """
    config = config or load_config()
    server_config = get_server_config(config)

    if host is not None:
        server_config["host"] = host
    if port is not None:
        server_config["port"] = port
    if reload is not None:
        server_config["reload"] = reload
    if log_level is not None:
        server_config["log_level"] = log_level.lower()

    logger.info(
        "Starting colony web server",
        host=server_config["host"],
        port=server_config["port"],
        reload=server_config["reload"],
        log_level=server_config["log_level"],
    )

    # One worker: the registry is owned by a single process.
    if server_config["reload"]:
        # Reload needs an import string; the factory reloads config itself.
        app_target: Any = "colony.web.app:create_app"
    else:
        app_target = create_app(config=config)

    uvicorn.run(
        app_target,
        host=server_config["host"],
        port=server_config["port"],
        reload=server_config["reload"],
        factory=server_config["reload"],
        log_level=server_config["log_level"],
        workers=1,
        access_log=True,
    )


def main() -> None:
    """Main entry point for web server script."""
    run_server()


if __name__ == "__main__":
    main()
