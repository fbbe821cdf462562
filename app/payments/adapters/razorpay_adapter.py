"""
Razorpay SDK adapter for the regional gateway.

Wraps the official ``razorpay`` client so timeouts, error translation and
logging are handled in one place. Every call carries a bounded timeout.

Flow:
    1. create_order(): the order id goes to the checkout widget
    2. Customer pays in the widget, which returns
       (razorpay_order_id, razorpay_payment_id, razorpay_signature)
    3. verify_payment_signature(): checked by the SDK against the key secret
    4. fetch_payment(): the captured amount and status

Configuration (via settings):
- RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET: API credentials
- RAZORPAY_WEBHOOK_SECRET: Webhook signing secret
- REGIONAL_GATEWAY_TIMEOUT_SECONDS: Request timeout (default: 10)

Usage:
    from payments.adapters import RazorpayAdapter

    order = RazorpayAdapter.create_order(
        amount=49900,
        currency="inr",
        receipt=str(payment.id),
        notes={"request_id": str(payment.request_id)},
    )
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import razorpay
import requests
from django.conf import settings
from razorpay.errors import (
    BadRequestError,
    GatewayError,
    ServerError,
    SignatureVerificationError,
)

from payments.exceptions import GatewayRejectedError, GatewayUnavailableError
from payments.state_machines import GatewayType

logger = logging.getLogger(__name__)

# Razorpay limits receipts to 40 characters
MAX_RECEIPT_LENGTH = 40


@dataclass
class OrderResult:
    """A Razorpay order (order_xxx)."""

    id: str
    amount: int
    currency: str
    status: str
    receipt: str = ""
    notes: dict[str, Any] = field(default_factory=dict)


@dataclass
class RegionalPaymentResult:
    """A Razorpay payment (pay_xxx)."""

    id: str
    order_id: str
    amount: int
    currency: str
    status: str
    method: str = ""

    @property
    def captured(self) -> bool:
        return self.status == "captured"


@dataclass
class RegionalRefundResult:
    """A Razorpay refund (rfnd_xxx)."""

    id: str
    payment_id: str
    amount: int
    status: str


class RazorpayAdapter:
    """
    Adapter for Razorpay API operations.

    All methods are class methods - no instance state is maintained.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _client() -> razorpay.Client:
        return razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))

    @staticmethod
    def _timeout() -> int:
        return getattr(settings, "REGIONAL_GATEWAY_TIMEOUT_SECONDS", 10)

    @classmethod
    def _call(
        cls,
        operation: str,
        func: Callable[..., dict[str, Any]],
        *args,
        log_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Perform one SDK call and translate failures.

        Raises:
            GatewayUnavailableError: Timeout, connection error, gateway or server error
            GatewayRejectedError: Request rejected by Razorpay
        """
        log_context = {"operation": operation, **(log_context or {})}
        start_time = time.time()
        logger.info("Starting Razorpay operation", extra=log_context)

        try:
            data = func(*args, timeout=cls._timeout())
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.error(
                "Connection error to Razorpay",
                extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
                exc_info=True,
            )
            raise GatewayUnavailableError(
                "Could not connect to Razorpay",
                gateway=GatewayType.REGIONAL_GATEWAY,
                provider_code=type(e).__name__,
            ) from e
        except (GatewayError, ServerError) as e:
            logger.error(
                "Razorpay unavailable",
                extra={
                    **log_context,
                    "provider_code": type(e).__name__,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            raise GatewayUnavailableError(
                f"Razorpay failed {operation}",
                gateway=GatewayType.REGIONAL_GATEWAY,
                provider_code=type(e).__name__,
            ) from e
        except BadRequestError as e:
            logger.warning(
                "Razorpay rejected request",
                extra={
                    **log_context,
                    "provider_message": str(e),
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            raise GatewayRejectedError(
                f"Razorpay rejected {operation}",
                error_code="INVALID_PROVIDER_REQUEST",
                gateway=GatewayType.REGIONAL_GATEWAY,
                provider_code=type(e).__name__,
            ) from e

        logger.info(
            "Razorpay operation completed",
            extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
        )
        return data

    # =========================================================================
    # Core Operations
    # =========================================================================

    @classmethod
    def create_order(
        cls,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict[str, str] | None = None,
    ) -> OrderResult:
        """Create an order the checkout widget will pay against."""
        data = cls._call(
            "create_order",
            cls._client().order.create,
            {
                "amount": amount,
                "currency": currency.upper(),
                "receipt": receipt[:MAX_RECEIPT_LENGTH],
                "notes": notes or {},
            },
            log_context={"amount": amount, "receipt": receipt},
        )
        return OrderResult(
            id=data["id"],
            amount=data["amount"],
            currency=data["currency"].lower(),
            status=data.get("status", ""),
            receipt=data.get("receipt") or "",
            notes=data.get("notes") or {},
        )

    @classmethod
    def fetch_payment(cls, payment_id: str) -> RegionalPaymentResult:
        data = cls._call(
            "fetch_payment",
            cls._client().payment.fetch,
            payment_id,
            log_context={"provider_payment_id": payment_id},
        )
        return RegionalPaymentResult(
            id=data["id"],
            order_id=data.get("order_id") or "",
            amount=data["amount"],
            currency=data["currency"].lower(),
            status=data["status"],
            method=data.get("method") or "",
        )

    @classmethod
    def create_refund(
        cls,
        payment_id: str,
        amount: int,
        receipt: str,
        notes: dict[str, str] | None = None,
    ) -> RegionalRefundResult:
        """
        Refund a captured payment.

        ``receipt`` is the idempotency handle: Razorpay rejects a second
        refund with the same receipt.
        """
        data = cls._call(
            "create_refund",
            cls._client().payment.refund,
            payment_id,
            {
                "amount": amount,
                "receipt": receipt[:MAX_RECEIPT_LENGTH],
                "notes": notes or {},
            },
            log_context={"provider_payment_id": payment_id, "amount": amount},
        )
        return RegionalRefundResult(
            id=data["id"],
            payment_id=data.get("payment_id") or payment_id,
            amount=data["amount"],
            status=data.get("status", ""),
        )

    # =========================================================================
    # Signatures
    # =========================================================================

    @classmethod
    def verify_payment_signature(
        cls,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> None:
        """
        Verify the checkout callback signature.

        Raises:
            GatewayRejectedError: Signature does not match
        """
        try:
            cls._client().utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature or "",
                }
            )
        except SignatureVerificationError as e:
            logger.warning(
                "Razorpay payment signature mismatch",
                extra={"order_id": order_id, "provider_payment_id": payment_id},
            )
            raise GatewayRejectedError(
                "Invalid payment signature",
                error_code="INVALID_SIGNATURE",
                gateway=GatewayType.REGIONAL_GATEWAY,
                provider_code="signature_mismatch",
            ) from e

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature: str) -> None:
        """
        Verify a webhook body against X-Razorpay-Signature.

        Raises:
            GatewayRejectedError: Signature does not match
        """
        try:
            cls._client().utility.verify_webhook_signature(
                payload.decode("utf-8"),
                signature or "",
                settings.RAZORPAY_WEBHOOK_SECRET,
            )
        except (SignatureVerificationError, UnicodeDecodeError) as e:
            raise GatewayRejectedError(
                "Invalid webhook signature",
                error_code="INVALID_WEBHOOK_SIGNATURE",
                gateway=GatewayType.REGIONAL_GATEWAY,
                provider_code="signature_mismatch",
            ) from e
