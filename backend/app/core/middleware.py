"""
Request middleware — correlation ids and the access log.

    X-Request-ID    echoed back; generated when the client sent none or
                    sent something unusable as a log key
    X-Process-Time  handler wall time

The access line names the profile that made the call. The auth
dependency leaves the profile id on ``request.state``, so a trigger can
be followed from its request line to the engine's dispatch lines.
Probe and docs traffic is only logged when it fails.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")
_MAX_REQUEST_ID_LENGTH = 64


def _request_id(request: Request) -> str:
    supplied = request.headers.get("X-Request-ID", "").strip()
    if supplied and len(supplied) <= _MAX_REQUEST_ID_LENGTH and supplied.isprintable():
        return supplied
    return uuid.uuid4().hex[:16]


def _log_access(
    request: Request, status_code: int, duration_ms: float, profile_id: Optional[str],
) -> None:
    path = request.url.path
    if status_code < 500 and path.startswith(_QUIET_PREFIXES):
        return

    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO

    logger.log(
        level,
        "%s %s → %d (%.1fms)%s",
        request.method, path, status_code, duration_ms,
        f" profile={profile_id}" if profile_id else "",
        extra={
            "duration_ms": duration_ms,
            "status_code": status_code,
            "endpoint": path,
            "profile_id": profile_id,
        },
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Correlation id, timing headers and one access line per request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _request_id(request)
        set_request_context(
            request_id=request_id,
            endpoint=request.url.path,
            method=request.method,
        )
        start = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            _log_access(
                request, status_code, duration_ms,
                getattr(request.state, "profile_id", None),
            )
            set_request_context()

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        return response
