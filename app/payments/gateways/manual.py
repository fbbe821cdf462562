"""
Manual transfer rail (bank transfer / UPI style).

No provider is called. create_intent hands out a static payee id and a
generated reference code; the requester pays outside the platform and
submits the transaction id their bank showed them. That id is the only
proof, so captures on this rail are recorded as low trust and dispute
review weighs them accordingly.
"""

from __future__ import annotations

import random
import time
from typing import TYPE_CHECKING, Any

from django.conf import settings

from core.exceptions import ValidationError

from payments.gateways.base import (
    CaptureResult,
    IntentResult,
    PaymentGateway,
    ProviderRefundResult,
)
from payments.state_machines import GatewayType, ProviderRefundStatus, TrustLevel

if TYPE_CHECKING:
    from payments.models import Payment


def generate_reference_code() -> str:
    """Return "UP" + epoch milliseconds + 0-999, e.g. UP1718000000000123."""
    return f"UP{int(time.time() * 1000)}{random.randint(0, 999)}"


class ManualTransferGateway(PaymentGateway):
    gateway_type = GatewayType.MANUAL_TRANSFER

    def create_intent(self, payment: Payment) -> IntentResult:
        reference = generate_reference_code()
        return IntentResult(
            reference=reference,
            client_data={
                "reference": reference,
                "payee_id": settings.MANUAL_TRANSFER_PAYEE_ID,
                "payee_name": settings.MANUAL_TRANSFER_PAYEE_NAME,
                "amount": payment.amount,
                "currency": payment.currency,
            },
        )

    def verify(
        self,
        payment: Payment,
        transaction_ref: str,
        transaction_id: str,
    ) -> CaptureResult:
        min_length = getattr(settings, "MANUAL_TRANSFER_MIN_REFERENCE_LENGTH", 5)
        transaction_id = (transaction_id or "").strip()

        if transaction_ref != payment.gateway_reference:
            raise ValidationError(
                "Reference code does not match this payment",
                error_code="REFERENCE_MISMATCH",
                details={"transaction_ref": ["Does not match this payment."]},
            )

        if len(transaction_id) < min_length:
            raise ValidationError(
                f"Transaction id must be at least {min_length} characters",
                error_code="TRANSACTION_ID_TOO_SHORT",
                details={
                    "transaction_id": [
                        f"Ensure this field has at least {min_length} characters."
                    ]
                },
            )

        return CaptureResult(
            transaction_id=transaction_id,
            captured_amount=payment.amount,
            currency=payment.currency,
            trust_level=TrustLevel.LOW,
            metadata={"low_trust": True, "transaction_ref": transaction_ref},
        )

    def refund(self, payment: Payment) -> ProviderRefundResult:
        return ProviderRefundResult(reference="", status=ProviderRefundStatus.MANUAL)

    def public_config(self) -> dict[str, Any]:
        return {
            "payee_id": settings.MANUAL_TRANSFER_PAYEE_ID,
            "payee_name": settings.MANUAL_TRANSFER_PAYEE_NAME,
        }
