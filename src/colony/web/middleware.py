"""Request tracking middleware for the colony API."""

import time
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_utils import log_api_request, log_api_response

REQUEST_ID_HEADER = "X-Request-ID"


def client_address(request: Request) -> str:
    """Best guess at the caller's address, honouring a reverse proxy."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else "unknown"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id and logs it with its duration.

    A caller-supplied ``X-Request-ID`` is kept so a dashboard can correlate
    its own logs with ours; otherwise a fresh uuid4 is issued.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        path = request.url.path

        log_api_request(
            method=request.method,
            path=path,
            client_ip=client_address(request),
            user_agent=request.headers.get("user-agent"),
            request_id=request_id,
        )
        started = time.perf_counter()
        response = await call_next(request)
        log_api_response(
            method=request.method,
            path=path,
            status_code=response.status_code,
            response_time_ms=round((time.perf_counter() - started) * 1000, 3),
            request_id=request_id,
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
