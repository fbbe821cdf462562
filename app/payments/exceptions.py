"""
Payment-specific exceptions.

Exception Hierarchy:
    BaseApplicationError
    ├── ValidationError
    │   └── InvalidAmountError            kind=InvalidAmount     400
    ├── ConflictError
    │   ├── DuplicateIntentError          kind=DuplicateIntent   409
    │   └── AlreadyCapturedError          kind=AlreadyCaptured   409
    ├── AmountMismatchError               kind=AmountMismatch    422
    ├── ExternalServiceError
    │   ├── GatewayUnavailableError       kind=GatewayUnavailable 503 (retryable)
    │   └── GatewayRejectedError          kind=GatewayRejected    402
    └── ReconciliationDivergenceError     kind=ReconciliationDivergence 500

Money-state guards (AmountMismatchError, AlreadyCapturedError,
ReconciliationDivergenceError) are logged with full context where they
are raised and always block the operation.

Gateway errors never expose provider internals to API clients; the
provider code travels in ``provider_code`` for logs only.

Usage:
    from payments.exceptions import GatewayUnavailableError

    try:
        gateway.create_intent(payment)
    except GatewayUnavailableError:
        # Client may retry; the idempotency key makes the retry safe
        raise
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


class InvalidAmountError(ValidationError):
    """Raised when an amount is zero, negative or not an integer."""

    kind: str = "InvalidAmount"
    default_error_code: str = "INVALID_AMOUNT"


class DuplicateIntentError(ConflictError):
    """
    Raised when createIntent is called for a request that already has a
    live payment with a different amount or gateway.

    A retry with the same amount and gateway returns the existing payment
    instead of raising.
    """

    kind: str = "DuplicateIntent"
    default_error_code: str = "DUPLICATE_INTENT"


class AlreadyCapturedError(ConflictError):
    """Raised when capture is attempted on a payment that already left 'none'."""

    kind: str = "AlreadyCaptured"
    default_error_code: str = "ALREADY_CAPTURED"


class AmountMismatchError(BaseApplicationError):
    """
    Raised when the amount a provider captured differs from the payment amount.

    Fatal for the payment: it never moves to held and nothing is
    auto-corrected.
    """

    kind: str = "AmountMismatch"
    status_code: int = 422
    default_error_code: str = "AMOUNT_MISMATCH"


class GatewayError(ExternalServiceError):
    """
    Base for payment provider failures.

    Attributes:
        gateway: Gateway that failed (card, regional_gateway, manual_transfer)
        provider_code: Provider's own error code, for logs only
    """

    default_error_code: str = "GATEWAY_ERROR"
    public_text: str = "The payment provider could not process this request."

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        gateway: str | None = None,
        provider_code: str | None = None,
    ):
        super().__init__(message, error_code=error_code, details=details)
        self.gateway = gateway
        self.provider_code = provider_code

    def public_message(self) -> str:
        return self.public_text

    def public_details(self) -> dict[str, Any]:
        return {"gateway": self.gateway} if self.gateway else {}


class GatewayUnavailableError(GatewayError):
    """Network failure, timeout, rate limit or provider outage. Retryable."""

    kind: str = "GatewayUnavailable"
    status_code: int = 503
    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True
    public_text: str = "The payment provider is temporarily unavailable. Please try again."


class GatewayRejectedError(GatewayError):
    """
    The provider answered and refused: card declined, bad signature,
    invalid request, authentication failure. Not retryable as-is.
    """

    kind: str = "GatewayRejected"
    status_code: int = 402
    default_error_code: str = "GATEWAY_REJECTED"
    public_text: str = "The payment could not be completed. Please check the details and try again."


class ReconciliationDivergenceError(BaseApplicationError):
    """
    Raised when request and payment state disagree in a way that breaks
    a money invariant.

    Surfaced to operators (log + notification). API clients only see a
    generic internal error.
    """

    kind: str = "ReconciliationDivergence"
    status_code: int = 500
    default_error_code: str = "RECONCILIATION_DIVERGENCE"

    def public_message(self) -> str:
        return "An internal error occurred. Our team has been notified."

    def public_details(self) -> dict[str, Any]:
        return {}


__all__ = [
    "InvalidAmountError",
    "DuplicateIntentError",
    "AlreadyCapturedError",
    "AmountMismatchError",
    "GatewayError",
    "GatewayUnavailableError",
    "GatewayRejectedError",
    "ReconciliationDivergenceError",
]
