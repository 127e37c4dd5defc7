"""
Error taxonomy for the marketplace access core.

Expected outcomes (a denied permission, a second purchase, a spent quota) are
returned as typed results carrying an ErrorKind. Callers that prefer
exceptions convert a failed result with `error_for_kind()`; every error has a
stable code, an HTTP status and a client-safe `to_dict()` shape.

Standard HTTP status codes:
- 400: Bad Request (malformed input)
- 402: Payment Required (premium quota spent, renewal needed)
- 403: Forbidden (permission denied)
- 404: Not Found
- 409: Conflict (active subscription exists, invalid state transition)
"""

from enum import Enum
from typing import Any, Optional

from fastapi import status


class ErrorKind(str, Enum):
    """Kinds of expected, recoverable denials."""
    PERMISSION_DENIED = "permission_denied"
    CONFLICT = "conflict"
    NOT_ACTIVE = "not_active"
    QUOTA_EXHAUSTED = "quota_exhausted"
    ALREADY_TERMINAL = "already_terminal"
    PLAN_INACTIVE = "plan_inactive"
    NOT_FOUND = "not_found"


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

    kind: Optional[ErrorKind] = None

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class PermissionDeniedError(AppError):
    """Permission denied (403)."""

    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, message: str = "Permission denied", details: Optional[dict[str, Any]] = None):
        # SECURITY: never reveal which bit failed or whether the feature exists
        super().__init__(
            code="PERMISSION_DENIED",
            message="Permission denied",
            status_code=status.HTTP_403_FORBIDDEN,
            details={},
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ConflictError(AppError):
    """Resource conflict (409)."""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str = "active subscription exists", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="CONFLICT",
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class InvalidStateError(AppError):
    """Base for subscription state violations (409)."""

    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class NotActiveError(InvalidStateError):
    """Operation requires an active subscription."""

    kind = ErrorKind.NOT_ACTIVE

    def __init__(self, message: str = "Subscription is not active", details: Optional[dict[str, Any]] = None):
        super().__init__("SUBSCRIPTION_NOT_ACTIVE", message, details)


class AlreadyTerminalError(InvalidStateError):
    """Subscription is already cancelled or expired."""

    kind = ErrorKind.ALREADY_TERMINAL

    def __init__(self, message: str = "Subscription already ended", details: Optional[dict[str, Any]] = None):
        super().__init__("SUBSCRIPTION_ALREADY_TERMINAL", message, details)


class PlanInactiveError(InvalidStateError):
    """Plan is no longer offered for new purchases."""

    kind = ErrorKind.PLAN_INACTIVE

    def __init__(self, message: str = "Plan is not available for purchase", details: Optional[dict[str, Any]] = None):
        super().__init__("PLAN_INACTIVE", message, details)


class QuotaExhaustedError(AppError):
    """All premium slots of the subscription are used (402)."""

    kind = ErrorKind.QUOTA_EXHAUSTED

    def __init__(self, message: str = "Premium post quota exhausted", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="SUBSCRIPTION_EXCEEDED",
            message=message,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details=details,
        )


_ERRORS_BY_KIND = {
    ErrorKind.PERMISSION_DENIED: PermissionDeniedError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.NOT_ACTIVE: NotActiveError,
    ErrorKind.QUOTA_EXHAUSTED: QuotaExhaustedError,
    ErrorKind.ALREADY_TERMINAL: AlreadyTerminalError,
    ErrorKind.PLAN_INACTIVE: PlanInactiveError,
}


def error_for_kind(kind: ErrorKind, details: Optional[dict[str, Any]] = None) -> AppError:
    """Build the AppError matching a result's error kind."""
    if kind is ErrorKind.NOT_FOUND:
        return NotFoundError("Subscription", (details or {}).get("subscription_id"))
    error_cls = _ERRORS_BY_KIND[kind]
    return error_cls(details=details)
