"""
Card gateway backed by Stripe PaymentIntents.

create_intent: PaymentIntent with automatic capture, client_secret to the client
confirm:       server-side retrieve of the intent; only 'succeeded' counts
refund:        Stripe Refund with an idempotency key per payment
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from django.conf import settings

from core.exceptions import ValidationError

from payments.adapters import (
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    StripeAdapter,
)
from payments.exceptions import GatewayRejectedError
from payments.gateways.base import (
    CaptureResult,
    IntentResult,
    PaymentGateway,
    ProviderRefundResult,
)
from payments.state_machines import GatewayType, ProviderRefundStatus, TrustLevel

if TYPE_CHECKING:
    from payments.models import Payment

logger = logging.getLogger(__name__)


class CardGateway(PaymentGateway):
    """
    Stripe card rail.

    The adapter class can be injected for tests:
        gateway = CardGateway(adapter=MockStripeAdapter)
    """

    gateway_type = GatewayType.CARD

    def __init__(self, adapter: type[StripeAdapter] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.adapter = adapter or StripeAdapter

    def create_intent(self, payment: Payment) -> IntentResult:
        with self.guarded():
            intent = self.adapter.create_payment_intent(
                CreatePaymentIntentParams(
                    amount=payment.amount,
                    currency=payment.currency,
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "create_intent", payment.id
                    ),
                    metadata={
                        "payment_id": str(payment.id),
                        "request_id": str(payment.request_id),
                    },
                )
            )

        return IntentResult(
            reference=intent.id,
            client_data={
                "payment_intent_id": intent.id,
                "client_secret": intent.client_secret,
                "publishable_key": settings.STRIPE_PUBLISHABLE_KEY,
            },
        )

    def confirm(self, payment: Payment, proof: dict[str, Any]) -> CaptureResult:
        """
        Confirm a card payment.

        ``proof`` carries ``payment_intent_id``. The intent is re-read from
        Stripe; what the client claims about its status is ignored.
        """
        intent_id = proof.get("payment_intent_id") or payment.gateway_reference
        if intent_id != payment.gateway_reference:
            raise ValidationError(
                "Payment intent does not belong to this payment",
                error_code="INTENT_MISMATCH",
                details={"payment_intent_id": ["Does not match this payment."]},
            )

        with self.guarded():
            intent = self.adapter.retrieve_payment_intent(intent_id)

        if intent.metadata.get("payment_id") not in (None, str(payment.id)):
            raise GatewayRejectedError(
                "Payment intent metadata points at another payment",
                error_code="INTENT_MISMATCH",
                gateway=self.gateway_type,
            )

        if not intent.succeeded:
            raise GatewayRejectedError(
                f"Payment intent is '{intent.status}', not succeeded",
                error_code="PAYMENT_NOT_COMPLETED",
                gateway=self.gateway_type,
                provider_code=intent.status,
            )

        return CaptureResult(
            transaction_id=intent.latest_charge or intent.id,
            captured_amount=intent.amount_received,
            currency=intent.currency,
            trust_level=TrustLevel.VERIFIED,
            metadata={"payment_intent_id": intent.id},
        )

    def refund(self, payment: Payment) -> ProviderRefundResult:
        with self.guarded():
            result = self.adapter.create_refund(
                payment_intent_id=payment.gateway_reference,
                idempotency_key=IdempotencyKeyGenerator.generate("refund", payment.id),
                amount=payment.captured_amount or payment.amount,
                metadata={"payment_id": str(payment.id)},
            )

        status = (
            ProviderRefundStatus.COMPLETED
            if result.status == "succeeded"
            else ProviderRefundStatus.SUBMITTED
        )
        return ProviderRefundResult(reference=result.id, status=status)

    def public_config(self) -> dict[str, Any]:
        return {"publishable_key": settings.STRIPE_PUBLISHABLE_KEY}
