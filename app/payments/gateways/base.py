"""
Gateway contract shared by every payment rail.

Each rail (card, regional gateway, manual transfer) implements the same
capability interface so the payment service never branches on the
provider:

    create_intent(payment)                         -> IntentResult
    confirm(payment, proof)                        -> CaptureResult  (signed rails)
    verify(payment, transaction_ref, supplied_id)  -> CaptureResult  (manual rail)
    refund(payment)                                -> ProviderRefundResult

Gateways never touch the database. They return plain results and the
payment service decides what happens to the Payment row.

Every provider call runs through a per-gateway CircuitBreaker; an open
circuit surfaces as GatewayUnavailableError so clients see one
retryable failure kind.

Usage:
    class MyGateway(PaymentGateway):
        gateway_type = "my_gateway"

        def create_intent(self, payment):
            with self.guarded():
                ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from django.conf import settings

from core.circuit_breaker import CircuitBreaker, CircuitOpenError
from core.exceptions import ValidationError

from payments.exceptions import GatewayUnavailableError
from payments.state_machines import ProviderRefundStatus, TrustLevel

if TYPE_CHECKING:
    from collections.abc import Generator

    from payments.models import Payment


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class IntentResult:
    """
    Opaque intent handed back to the client.

    Attributes:
        reference: Provider intent/order id, or the manual reference code
        client_data: Public data the client needs to complete payment
    """

    reference: str
    client_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class CaptureResult:
    """
    Proof that funds were captured.

    Attributes:
        transaction_id: Provider payment id, or the user-supplied transaction id
        captured_amount: Amount the provider reports as captured
        currency: Currency of the captured amount
        trust_level: verified for signed captures, low for manual transfers
        metadata: Extra facts recorded on the ledger entry
    """

    transaction_id: str
    captured_amount: int
    currency: str
    trust_level: str = TrustLevel.VERIFIED
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderRefundResult:
    reference: str
    status: str = ProviderRefundStatus.SUBMITTED


class UnsupportedGatewayOperation(ValidationError):
    """The chosen rail has no such step (e.g., confirm on manual transfer)."""

    default_error_code: str = "UNSUPPORTED_GATEWAY_OPERATION"


# =============================================================================
# Abstract Gateway
# =============================================================================


class PaymentGateway(ABC):
    """
    Abstract base class for payment gateways.

    Subclasses set ``gateway_type`` and implement create_intent and
    refund, plus whichever of confirm/verify their rail supports.
    """

    gateway_type: ClassVar[str]

    def __init__(self, circuit_breaker: CircuitBreaker | None = None) -> None:
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name=f"gateway:{self.gateway_type}",
            failure_threshold=getattr(settings, "GATEWAY_CIRCUIT_FAILURE_THRESHOLD", 5),
            recovery_timeout=getattr(settings, "GATEWAY_CIRCUIT_RECOVERY_TIMEOUT", 60),
            failure_exceptions=(GatewayUnavailableError,),
        )

    @contextmanager
    def guarded(self) -> Generator[None, None, None]:
        """Run a provider call through the circuit breaker."""
        try:
            with self.circuit_breaker.call():
                yield
        except CircuitOpenError as e:
            raise GatewayUnavailableError(
                str(e),
                error_code="GATEWAY_CIRCUIT_OPEN",
                gateway=self.gateway_type,
                provider_code="circuit_open",
            ) from e

    @abstractmethod
    def create_intent(self, payment: Payment) -> IntentResult:
        """Start a payment at the provider for ``payment.amount``."""

    def confirm(self, payment: Payment, proof: dict[str, Any]) -> CaptureResult:
        """Validate the provider's signed confirmation."""
        raise UnsupportedGatewayOperation(
            f"'{self.gateway_type}' payments are not confirmed this way",
            details={"gateway": [self.gateway_type]},
        )

    def verify(
        self,
        payment: Payment,
        transaction_ref: str,
        transaction_id: str,
    ) -> CaptureResult:
        """Accept a user-supplied transaction id as capture proof."""
        raise UnsupportedGatewayOperation(
            f"'{self.gateway_type}' payments do not accept manual verification",
            details={"gateway": [self.gateway_type]},
        )

    @abstractmethod
    def refund(self, payment: Payment) -> ProviderRefundResult:
        """Return captured funds at the provider."""

    def public_config(self) -> dict[str, Any]:
        """Public identifiers clients need for this rail."""
        return {}
