"""
Lifecycle and policy exceptions.

Exception Hierarchy:
    PermissionDeniedError (Forbidden, 403)
    ├── ForbiddenActionError       role may not invoke the action
    └── DisputeFrozenError         unresolved dispute blocks the action
    CancelWindowExpiredError       WindowExpired, 422
"""

from __future__ import annotations

from core.exceptions import BaseApplicationError, PermissionDeniedError


class ForbiddenActionError(PermissionDeniedError):
    default_error_code: str = "ACTION_NOT_ALLOWED_FOR_ROLE"


class DisputeFrozenError(PermissionDeniedError):
    """
    Raised when an unresolved dispute freezes the request.

    Only admin release/refund with resolve_dispute may proceed.
    """

    default_error_code: str = "DISPUTE_FROZEN"


class CancelWindowExpiredError(BaseApplicationError):
    """Raised when cancel is attempted after cancel_deadline."""

    kind: str = "WindowExpired"
    status_code: int = 422
    default_error_code: str = "CANCEL_WINDOW_EXPIRED"


__all__ = [
    "CancelWindowExpiredError",
    "DisputeFrozenError",
    "ForbiddenActionError",
]
