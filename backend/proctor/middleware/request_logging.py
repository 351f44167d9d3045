"""
Request/response logging middleware.
"""
import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable

from proctor.core.logging_config import request_id_context

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log each request and its response with timing.

    Assigns a request ID (or reuses the client's X-Request-ID) for log
    correlation and echoes it back in the response headers. Admin tokens are
    never logged.
    """

    def __init__(self, app, slow_request_threshold: float = 1.0):
        """
        Args:
            app: ASGI application
            slow_request_threshold: Seconds after which a request is logged
                as slow at WARNING level
        """
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_context.set(request_id)

        start_time = time.perf_counter()
        method = request.method
        path = str(request.url.path)
        client_host = request.client.host if request.client else "unknown"

        logger.debug(
            "Incoming request",
            extra={"method": method, "path": path, "client_host": client_host},
        )

        try:
            response = await call_next(request)
        finally:
            duration = time.perf_counter() - start_time

        response.headers["X-Request-ID"] = request_id

        extra_fields = {
            "method": method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
            "client_host": client_host,
        }

        if response.status_code >= 500:
            logger.error("Server error response", extra=extra_fields)
        elif response.status_code >= 400:
            logger.warning("Client error response", extra=extra_fields)
        elif duration > self.slow_request_threshold:
            logger.warning("Slow request", extra=extra_fields)
        else:
            logger.info("Request completed", extra=extra_fields)

        request_id_context.reset(token)
        return response
