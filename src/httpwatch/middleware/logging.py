"""Request logging middleware."""
import time
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

EXCLUDED_PATHS = frozenset({"/_/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log served requests as ``http_request`` events.

    Health probes are skipped. Websocket connections bypass HTTP
    middleware and are logged by their delivery loop instead. Server
    errors are logged at warning level.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            encoding=response.headers.get("content-encoding", "identity"),
            duration_ms=duration_ms,
            client=request.client.host if request.client else None,
        )
        return response
