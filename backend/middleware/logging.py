"""Request/Response logging middleware.

Logs one line per request with a short correlation id, the duration and the
status code. Generation requests routinely take tens of seconds, so the
duration is the number to watch when the deadline starts firing.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger("api.requests")

# Paths to exclude from logging (noisy endpoints)
EXCLUDED_PATHS = {
    "/health",
    "/",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs HTTP requests and responses.

    For each request, logs:
    - Request ID (for correlation)
    - HTTP method and path
    - Request duration
    - Response status code

    Request bodies are never logged: they carry user photos.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXCLUDED_PATHS or request.url.path.startswith("/storage/"):
            return await call_next(request)

        request_id = uuid.uuid4().hex[:8]
        start_time = time.monotonic()
        client_ip = request.client.host if request.client else "unknown"
        request_desc = f"[{request_id}] {request.method} {request.url.path} client={client_ip}"

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.monotonic() - start_time
            logger.error(f"{request_desc} - ERROR ({duration:.3f}s): {type(e).__name__}")
            raise

        duration = time.monotonic() - start_time
        status_class = response.status_code // 100

        # Use appropriate log level based on status code
        if status_class == 5:
            log_func = logger.error
        elif status_class == 4:
            log_func = logger.warning
        elif request.method == "GET":
            log_func = logger.debug
        else:
            log_func = logger.info

        log_func(f"{request_desc} - {response.status_code} ({duration:.3f}s)")

        response.headers["X-Request-ID"] = request_id
        return response


def configure_request_logging(log_level: str = "INFO") -> None:
    """
    Configure the request logger.

    Call during application startup, before the middleware is added.
    """
    request_logger = logging.getLogger("api.requests")
    request_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    # Prevent duplicate emission via root logger handlers.
    request_logger.propagate = False

    if not request_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        )
        request_logger.addHandler(handler)
