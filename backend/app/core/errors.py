"""
Error hierarchy and the JSON error envelope.

Every error the API returns is a SafetyAPIError subclass carrying its
HTTP status, a stable machine-readable code and optional details, and is
rendered by `error_envelope`.

Two families of failures exist:

    Fatal (propagate, abort with no partial state)
        NotAuthenticatedError, LocationUnavailableError
    Degraded (captured after the alert is durable, never rolled back)
        NotificationDispatchError, VerificationAnchorError

Usage:
    from backend.app.core.errors import AlertNotFoundError

    raise AlertNotFoundError("ALR-0A1B2C3D4E5F")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings
from backend.app.core.logging_config import get_request_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SafetyAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotAuthenticatedError(SafetyAPIError):
    """No loaded profile for the caller (401)."""

    def __init__(self, message: str = "You must be logged in to perform this action"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="NOT_AUTHENTICATED",
        )


class TriggerFailedError(SafetyAPIError):
    """An SOS trigger could not produce a durable alert (503)."""

    def __init__(
        self,
        message: str = "Failed to trigger SOS alert",
        *,
        error_code: str = "TRIGGER_FAILED",
        **details: Any,
    ):
        super().__init__(
            message=message,
            status_code=503,
            error_code=error_code,
            details=details,
        )


class LocationUnavailableError(TriggerFailedError):
    """The location provider could not produce a reading."""

    def __init__(self, reason: str = "", **details: Any):
        message = "Current location is unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, error_code="LOCATION_UNAVAILABLE", **details)
        self.reason = reason


class AlertNotFoundError(SafetyAPIError):
    """No alert with the given id in the profile's history (404)."""

    def __init__(self, alert_id: str):
        super().__init__(
            message=f"Alert '{alert_id}' not found",
            status_code=404,
            error_code="ALERT_NOT_FOUND",
            details={"alert_id": alert_id},
        )
        self.alert_id = alert_id


class ContactNotFoundError(SafetyAPIError):
    """No contact with the given id in the profile's directory (404)."""

    def __init__(self, contact_id: str):
        super().__init__(
            message=f"Contact '{contact_id}' not found",
            status_code=404,
            error_code="CONTACT_NOT_FOUND",
            details={"contact_id": contact_id},
        )
        self.contact_id = contact_id


class ValidationError(SafetyAPIError):
    """Input validation failed (422)."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
        **details: Any,
    ):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code=error_code,
            details=d,
        )


class NameRequiredError(ValidationError):
    def __init__(self):
        super().__init__(
            "Contact name is required",
            field="name",
            error_code="NAME_REQUIRED",
        )


class PhoneRequiredError(ValidationError):
    def __init__(self):
        super().__init__(
            "Contact phone number is required",
            field="phone_number",
            error_code="PHONE_REQUIRED",
        )


class EmailRequiredError(ValidationError):
    def __init__(self, contact_id: str):
        super().__init__(
            "No email address found for this contact",
            field="email",
            error_code="EMAIL_REQUIRED",
            contact_id=contact_id,
        )


class InvalidAlertTransitionError(SafetyAPIError):
    """Requested status change is not allowed from the alert's state (409)."""

    def __init__(self, alert_id: str, current: str, requested: str):
        super().__init__(
            message=(
                f"Alert '{alert_id}' cannot move from '{current}' to '{requested}'"
            ),
            status_code=409,
            error_code="INVALID_TRANSITION",
            details={
                "alert_id": alert_id,
                "current_status": current,
                "requested_status": requested,
            },
        )


class NotificationDispatchError(SafetyAPIError):
    """Delivery to a single recipient failed (non-fatal)."""

    def __init__(self, recipient: str, message: str = "", *, timed_out: bool = False):
        super().__init__(
            message=f"Notification to {recipient} failed: {message}",
            status_code=502,
            error_code="NOTIFICATION_DISPATCH_FAILED",
            details={"recipient": recipient, "timed_out": timed_out},
        )
        self.timed_out = timed_out


class VerificationAnchorError(SafetyAPIError):
    """The verification anchor could not record the alert (non-fatal)."""

    def __init__(self, message: str = "", **details: Any):
        super().__init__(
            message=f"Verification anchor failed: {message}",
            status_code=502,
            error_code="VERIFICATION_ANCHOR_FAILED",
            details=details,
        )


class CountdownNotFoundError(SafetyAPIError):
    def __init__(self, countdown_id: str):
        super().__init__(
            message=f"Countdown '{countdown_id}' not found",
            status_code=404,
            error_code="COUNTDOWN_NOT_FOUND",
            details={"countdown_id": countdown_id},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Envelope
# ═══════════════════════════════════════════════════════════════════════════
#
#   {"error": {"code": "ALERT_NOT_FOUND", "message": "...", "status": 404,
#              "details": {...}, "request_id": "...",
#              "path": "/api/v1/...", "method": "POST"}}   ← path/method outside production

def error_envelope(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details

    request_id = get_request_context().get("request_id")
    if request_id:
        error["request_id"] = request_id
    if request is not None and not settings.is_production:
        error.update(path=request.url.path, method=request.method)

    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """
    Install handlers so every failure leaves the API in the same envelope.

    SafetyAPIError     its own status / code; 4xx at WARNING, 5xx at ERROR
    request validation 422 REQUEST_INVALID with pydantic's error list
    anything else      500 INTERNAL_ERROR; message and traceback only in DEBUG
    """

    @app.exception_handler(SafetyAPIError)
    async def handle_safety_error(request: Request, exc: SafetyAPIError):
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "%s %s failed [%s]: %s",
            request.method, request.url.path, exc.error_code, exc.message,
            extra={"status_code": exc.status_code},
        )
        return error_envelope(
            exc.status_code, exc.error_code, exc.message, exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg", "")}
            for e in exc.errors()
        ]
        logger.warning(
            "%s %s rejected: %d invalid field(s)",
            request.method, request.url.path, len(errors),
        )
        return error_envelope(
            422, "REQUEST_INVALID", "Request body or parameters are invalid",
            {"errors": errors}, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled %s on %s %s",
            type(exc).__name__, request.method, request.url.path,
            exc_info=exc,
        )
        details = None
        if settings.DEBUG:
            details = {
                "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
            }
        return error_envelope(
            500, "INTERNAL_ERROR",
            str(exc) if settings.DEBUG else "Internal server error",
            details, request,
        )
