"""
Regional gateway backed by Razorpay orders.

create_intent: order creation, order id + key id to the checkout widget
confirm:       HMAC check of the checkout callback, then a server-side
               fetch of the payment for its status and captured amount
refund:        Razorpay refund with the payment id as receipt
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from django.conf import settings

from core.exceptions import ValidationError

from payments.adapters import RazorpayAdapter
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

PROOF_FIELDS = ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")


class RegionalGateway(PaymentGateway):
    gateway_type = GatewayType.REGIONAL_GATEWAY

    def __init__(self, adapter: type[RazorpayAdapter] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.adapter = adapter or RazorpayAdapter

    def create_intent(self, payment: Payment) -> IntentResult:
        with self.guarded():
            order = self.adapter.create_order(
                amount=payment.amount,
                currency=payment.currency,
                receipt=str(payment.id),
                notes={
                    "payment_id": str(payment.id),
                    "request_id": str(payment.request_id),
                },
            )

        return IntentResult(
            reference=order.id,
            client_data={
                "order_id": order.id,
                "key_id": settings.RAZORPAY_KEY_ID,
                "amount": order.amount,
                "currency": order.currency,
            },
        )

    def confirm(self, payment: Payment, proof: dict[str, Any]) -> CaptureResult:
        missing = [name for name in PROOF_FIELDS if not proof.get(name)]
        if missing:
            raise ValidationError(
                "Incomplete checkout callback",
                error_code="REQUIRED_FIELDS_MISSING",
                details={name: ["This field is required."] for name in missing},
            )

        order_id = proof["razorpay_order_id"]
        provider_payment_id = proof["razorpay_payment_id"]

        if order_id != payment.gateway_reference:
            raise ValidationError(
                "Order does not belong to this payment",
                error_code="INTENT_MISMATCH",
                details={"razorpay_order_id": ["Does not match this payment."]},
            )

        self.adapter.verify_payment_signature(
            order_id=order_id,
            payment_id=provider_payment_id,
            signature=proof["razorpay_signature"],
        )

        with self.guarded():
            provider_payment = self.adapter.fetch_payment(provider_payment_id)

        if provider_payment.order_id and provider_payment.order_id != order_id:
            raise GatewayRejectedError(
                "Provider payment belongs to another order",
                error_code="INTENT_MISMATCH",
                gateway=self.gateway_type,
            )

        if not provider_payment.captured:
            raise GatewayRejectedError(
                f"Provider payment is '{provider_payment.status}', not captured",
                error_code="PAYMENT_NOT_COMPLETED",
                gateway=self.gateway_type,
                provider_code=provider_payment.status,
            )

        return CaptureResult(
            transaction_id=provider_payment.id,
            captured_amount=provider_payment.amount,
            currency=provider_payment.currency,
            trust_level=TrustLevel.VERIFIED,
            metadata={"order_id": order_id, "method": provider_payment.method},
        )

    def refund(self, payment: Payment) -> ProviderRefundResult:
        with self.guarded():
            result = self.adapter.create_refund(
                payment_id=payment.gateway_transaction_id,
                amount=payment.captured_amount or payment.amount,
                receipt=f"refund-{payment.id}",
                notes={"payment_id": str(payment.id)},
            )

        status = (
            ProviderRefundStatus.COMPLETED
            if result.status == "processed"
            else ProviderRefundStatus.SUBMITTED
        )
        return ProviderRefundResult(reference=result.id, status=status)

    def public_config(self) -> dict[str, Any]:
        return {"key_id": settings.RAZORPAY_KEY_ID}
