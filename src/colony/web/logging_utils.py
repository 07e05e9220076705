"""
Logging utilities for the web interface.

This module provides request/response logging and a performance tracking
decorator for API endpoints.
"""

import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..utils.logging import LogContext, get_logger

api_logger = get_logger(__name__ + ".api", LogContext.WEB)

T = TypeVar("T")


def log_api_request(
    method: str,
    path: str,
    client_ip: str,
    user_agent: str | None = None,
    request_id: str | None = None,
) -> None:
    """Log incoming API requests."""
    api_logger.info(
        "API request received",
        method=method,
        path=path,
        client_ip=client_ip,
        user_agent=user_agent,
        request_id=request_id,
    )


def log_api_response(
    method: str,
    path: str,
    status_code: int,
    response_time_ms: float,
    request_id: str | None = None,
) -> None:
    """Log API responses with timing."""
    log_level = "info" if 200 <= status_code < 400 else "warning"

    getattr(api_logger, log_level)(
        "API response sent",
        method=method,
        path=path,
        status_code=status_code,
        response_time_ms=response_time_ms,
        request_id=request_id,
    )


def track_api_performance() -> Callable[
    [Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]
]:
    """Decorator logging the execution time of an async endpoint."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                api_logger.warning(
                    f"Performance: {func.__name__} failed",
                    function=func.__name__,
                    execution_time_ms=(time.time() - start_time) * 1000,
                    status="error",
                    error=str(e),
                )
                raise
            api_logger.debug(
                f"Performance: {func.__name__} completed",
                function=func.__name__,
                execution_time_ms=(time.time() - start_time) * 1000,
                status="success",
            )
            return result

        return wrapper

    return decorator
