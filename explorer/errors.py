"""Application error taxonomy.

Every condition raised past the service boundary carries an HTTP-equivalent
status code and a machine-readable code string. The FastAPI exception handler
in ``explorer.main`` renders these; anything else is wrapped as InternalError.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


class AppError(Exception):
    """Base class for coded application errors."""

    status_code: int = 500
    default_message: str = "Internal server error"
    default_code: Optional[str] = None

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.code = code or self.default_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": self.message,
            "statusCode": self.status_code,
            "timestamp": self.timestamp,
        }
        if self.code:
            payload["code"] = self.code
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"
    default_code = "VALIDATION_ERROR"


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Authentication required"
    default_code = "AUTH_REQUIRED"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Access denied"
    default_code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    default_message = "Resource conflict"
    default_code = "CONFLICT"


class LockedError(AppError):
    """Temporary, time-bound denial (account lockout), not a credential problem."""

    status_code = 423
    default_message = "Too many failed attempts. Try again later."
    default_code = "ACCOUNT_LOCKED"


class RateLimitError(AppError):
    status_code = 429
    default_message = "Too many requests"
    default_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[int] = None) -> None:
        details = {"retryAfter": retry_after} if retry_after else None
        super().__init__(message, details=details)


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"
    default_code = "INTERNAL_ERROR"
