"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes for the alert / rescue workflows
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Error taxonomy:

    Exception                      HTTP   Surfaced to caller?
    ─────────────────────────────  ────   ───────────────────────────────
    ValidationError                422    yes — user-correctable input
    NotFoundError                  404    yes
    AuthenticationError            401    yes
    AuthorizationError             403    yes
    AlreadyPublishedError          409    yes — invalid state transition
    InactiveAlertError             409    yes — invalid state transition
    ExpiredAlertError              409    yes (subclass of InactiveAlertError)
    InvalidTransitionError         409    yes — rescue request status
    ConcurrentModificationError    409    yes — caller may retry
    DeliveryError                  502    never raised out of dispatch

Usage:
    from bantay.app.core.errors import NotFoundError

    raise NotFoundError("Alert", code="ALT-20261019-001")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bantay.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class BantayError(Exception):
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


class NotFoundError(BantayError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(BantayError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class AuthenticationError(BantayError):
    """No resolvable acting user (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTHENTICATION_REQUIRED",
        )


class AuthorizationError(BantayError):
    """Acting user lacks the required role (403)."""

    def __init__(self, action: str, role: str):
        super().__init__(
            message=f"Role '{role}' is not allowed to {action}",
            status_code=403,
            error_code="FORBIDDEN",
            details={"action": action, "role": role},
        )


class AlreadyPublishedError(BantayError):
    """Publish requested on an alert that is already published (409)."""

    def __init__(self, code: str):
        super().__init__(
            message=f"Alert {code} is already published",
            status_code=409,
            error_code="ALREADY_PUBLISHED",
            details={"code": code},
        )


class InactiveAlertError(BantayError):
    """Operation requires an active, published alert (409)."""

    def __init__(self, code: str, reason: str = "alert is deactivated"):
        super().__init__(
            message=f"Alert {code}: {reason}",
            status_code=409,
            error_code="INACTIVE_ALERT",
            details={"code": code, "reason": reason},
        )


class ExpiredAlertError(InactiveAlertError):
    """Alert's expiry has elapsed; it is read-only except for deactivation."""

    def __init__(self, code: str):
        super().__init__(code, reason="alert has expired")
        self.error_code = "EXPIRED_ALERT"


class InvalidTransitionError(BantayError):
    """Rescue request status change not allowed from the current status (409)."""

    def __init__(self, resource: str, current: str, requested: str):
        super().__init__(
            message=f"{resource} cannot move from '{current}' to '{requested}'",
            status_code=409,
            error_code="INVALID_TRANSITION",
            details={"current": current, "requested": requested},
        )


class ConcurrentModificationError(BantayError):
    """Record changed between read and write (409, retryable)."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} {identifier} was modified concurrently; retry the operation",
            status_code=409,
            error_code="CONCURRENT_MODIFICATION",
            details={"resource": resource, "id": identifier},
        )


class DeliveryError(BantayError):
    """Per-recipient delivery failure — recorded, never propagated by publish."""

    def __init__(self, alert_code: str, channel: str, recipient: str, message: str = ""):
        super().__init__(
            message=f"Alert {alert_code} delivery to {recipient} failed on {channel}: {message}",
            status_code=502,
            error_code="DELIVERY_ERROR",
            details={"alert_code": alert_code, "channel": channel, "recipient": recipient},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(BantayError)
    async def handle_bantay_error(request: Request, exc: BantayError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
