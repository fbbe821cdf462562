"""
Adapters for external payment providers.

All provider API calls go through these adapters so timeouts,
idempotency, error translation and logging stay consistent.

- StripeAdapter: card processor (official SDK)
- RazorpayAdapter: regional gateway (REST over requests)

Usage:
    from payments.adapters import StripeAdapter, CreatePaymentIntentParams

    result = StripeAdapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount=49900,
            currency="inr",
            idempotency_key="create_intent:payment_123:1:abcd1234",
        )
    )
"""

from payments.adapters.razorpay_adapter import (
    OrderResult,
    RazorpayAdapter,
    RegionalPaymentResult,
    RegionalRefundResult,
)
from payments.adapters.stripe_adapter import (
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    RefundResult,
    StripeAdapter,
)

__all__ = [
    "CreatePaymentIntentParams",
    "IdempotencyKeyGenerator",
    "OrderResult",
    "PaymentIntentResult",
    "RazorpayAdapter",
    "RefundResult",
    "RegionalPaymentResult",
    "RegionalRefundResult",
    "StripeAdapter",
]
