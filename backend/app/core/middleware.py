"""
Buildora - HTTP Middleware
Request correlation ids, access logging and body size limits
"""

import logging
import time
from typing import Callable, Optional, Set
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse
from starlette.types import ASGIApp

from app.core.logging_config import (
    logger,
    set_request_id,
    set_session_id,
    set_project_id,
    generate_request_id,
)


# Health checks and docs are not access-logged
QUIET_PATHS: Set[str] = {
    "/",
    "/health",
    "/health/live",
    "/health/ready",
    "/docs",
    "/redoc",
    "/openapi.json",
}

# SSE endpoints: the response returns as soon as headers are sent, the run continues
STREAMING_SUFFIX = "/stream"


def project_id_from_path(path: str) -> Optional[str]:
    """/api/v1/projects/{id}/urls -> id"""
    if "/projects/" not in path:
        return None
    return path.split("/projects/", 1)[1].split("/", 1)[0] or None


def status_log_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds request/session/project ids to the logging context for the
    duration of a request and echoes X-Request-ID back to the caller.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)
        set_session_id(request.headers.get("X-Session-ID", ""))
        set_project_id(request.headers.get("X-Project-ID") or project_id_from_path(request.url.path) or "")

        path = request.url.path
        quiet = path in QUIET_PATHS
        streaming = path.endswith(STREAMING_SUFFIX)
        start_time = time.perf_counter()

        if not quiet:
            logger.info(
                f"→ {request.method} {path}",
                extra={
                    "event_type": "http_request_start",
                    "http_method": request.method,
                    "http_path": path,
                    "client_ip": request.client.host if request.client else "unknown",
                }
            )

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"✗ {request.method} {path} - {type(exc).__name__} ({duration_ms:.2f}ms)",
                exc_info=True,
                extra={"event_type": "http_request_error", "http_path": path, "duration_ms": duration_ms},
            )
            raise
        finally:
            set_request_id("")
            set_session_id("")
            set_project_id("")

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        if not quiet:
            label = "stream opened" if streaming else f"{duration_ms:.2f}ms"
            logger.log(
                status_log_level(response.status_code),
                f"← {request.method} {path} - {response.status_code} ({label})",
                extra={
                    "event_type": "http_request_complete",
                    "http_method": request.method,
                    "http_path": path,
                    "http_status": response.status_code,
                    "duration_ms": duration_ms,
                    "is_streaming": streaming,
                }
            )
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects bodies over max_size; requests only carry prompts"""

    def __init__(self, app: ASGIApp, max_size: int = 1024 * 1024):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length", "")

        if content_length.isdigit() and int(content_length) > self.max_size:
            logger.warning(
                f"Request body too large: {content_length} bytes (max: {self.max_size})",
                extra={"event_type": "request_too_large", "http_path": request.url.path},
            )
            return JSONResponse(
                status_code=413,
                content={"detail": f"Request body too large. Maximum size is {self.max_size // 1024}KB"}
            )

        return await call_next(request)
