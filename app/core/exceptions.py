"""
Base exception classes for application-wide error handling.

Every error the API can return belongs to a small, fixed taxonomy. Each
exception class declares:

- kind: taxonomy name surfaced to clients as ``error.kind``
- status_code: HTTP status used by the API exception handler
- default_error_code: finer-grained machine-readable code

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Bad input, user-correctable (kind=ValidationError)
    ├── NotFoundError - Resource not found (kind=NotFound)
    ├── PermissionDeniedError - Role or ownership violation (kind=Forbidden)
    ├── ConflictError - Lost a race or state conflict (kind=Conflict)
    │   ├── StaleRecordError - Optimistic version check failed
    │   ├── LockAcquisitionError - Distributed lock contention
    │   └── InvalidTransitionError - State precondition violated (kind=InvalidTransition)
    ├── RateLimitError - Too many requests (kind=RateLimited)
    └── ExternalServiceError - Third-party failure (kind=ExternalServiceError)

Usage:
    from core.exceptions import ConflictError, ValidationError

    raise ValidationError(
        "Missing required fields",
        details={"service_location": ["This field is required."]},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.status_code)

Response envelope produced by to_dict():
    {
        "error": {
            "kind": "Conflict",
            "code": "STALE_RECORD",
            "message": "This request was changed by someone else. Reload and retry.",
            "details": {"expected_version": 3, "current_version": 4}
        }
    }
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description (safe to show end users)
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, versions, etc.)

    Example:
        try:
            RequestLifecycleService.accept(request_id, helper)
        except BaseApplicationError as e:
            logger.warning("Accept failed", extra={"kind": e.kind})
            return Response(e.to_dict(), status=e.status_code)
    """

    kind: str = "ApplicationError"
    status_code: int = 400
    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def public_message(self) -> str:
        """Message shown to API clients. Subclasses may hide internals."""
        return self.message

    def public_details(self) -> dict[str, Any]:
        """Details shown to API clients. Subclasses may hide internals."""
        return self.details

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to the API error envelope.

        Returns:
            Dict with a single "error" key holding kind, code, message
            and (when present) details.
        """
        error: dict[str, Any] = {
            "kind": self.kind,
            "code": self.error_code,
            "message": self.public_message(),
        }
        details = self.public_details()
        if details:
            error["details"] = details
        return {"error": error}

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for service-layer rules that a serializer cannot express
    (cross-field checks, reference formats, amount rules). Never
    retried automatically; the caller corrects the input.

    Example:
        raise ValidationError(
            "Transaction id must be at least 5 characters",
            error_code="TRANSACTION_ID_TOO_SHORT",
            details={"min_length": 5},
        )
    """

    kind: str = "ValidationError"
    status_code: int = 400
    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        raise NotFoundError(
            f"Request {request_id} not found",
            error_code="REQUEST_NOT_FOUND",
            details={"request_id": str(request_id)},
        )
    """

    kind: str = "NotFound"
    status_code: int = 404
    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the actor's role or relationship forbids the operation.

    Covers role-gated actions (a helper trying to confirm completion),
    ownership (a requester acting on someone else's request) and frozen
    resources (an open dispute blocking normal transitions).

    Note:
        Authentication failures (missing/invalid token) are handled by
        DRF before reaching the service layer.
    """

    kind: str = "Forbidden"
    status_code: int = 403
    default_error_code: str = "FORBIDDEN"


class ConflictError(BaseApplicationError):
    """
    Raised when the operation conflicts with current resource state.

    The caller must refetch state and decide whether to retry. The
    service layer never retries these on the caller's behalf.
    """

    kind: str = "Conflict"
    status_code: int = 409
    default_error_code: str = "CONFLICT"


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    Details carry pk, expected_version and current_version so the
    client can show what changed.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Details carry the lock key and timeout.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed from the current state.

    Wraps django-fsm's TransitionNotAllowed as well as table lookups that
    find the action valid for the role but not for the current state.

    Example:
        raise InvalidTransitionError(
            "Cannot start a request that is 'requested'",
            details={"current_state": "requested", "action": "start"},
        )
    """

    kind: str = "InvalidTransition"
    default_error_code: str = "INVALID_STATE_TRANSITION"


class RateLimitError(BaseApplicationError):
    """
    Raised when rate limit is exceeded.

    Include retry_after (seconds) in details when known.
    """

    kind: str = "RateLimited"
    status_code: int = 429
    default_error_code: str = "RATE_LIMIT_EXCEEDED"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    The public message never includes provider internals; log the
    original error where it is caught.

    Attributes:
        is_retryable: Whether the caller may safely retry the call
    """

    kind: str = "ExternalServiceError"
    status_code: int = 502
    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    is_retryable: bool = False


__all__ = [
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidTransitionError",
    "RateLimitError",
    "ExternalServiceError",
]
