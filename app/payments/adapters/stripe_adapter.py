"""
Stripe API adapter for card payments.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions for the card gateway. All Stripe calls go
through this adapter so timeouts, idempotency, error translation and
logging are handled in one place.

Features:
- Bounded timeouts on all API calls
- SDK network retries that reuse the caller's idempotency key
- Translation of Stripe errors to gateway exceptions
- Structured logging with timing metrics

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: SDK network retries (default: 2)

Usage:
    from payments.adapters import StripeAdapter, CreatePaymentIntentParams

    result = StripeAdapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount=49900,
            currency="inr",
            metadata={"payment_id": str(payment.id)},
            idempotency_key=IdempotencyKeyGenerator.generate("create_intent", payment.id),
        )
    )
    result.client_secret  # handed to the client for card confirmation
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import stripe
from django.conf import settings

from payments.exceptions import GatewayRejectedError, GatewayUnavailableError
from payments.state_machines import GatewayType

# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating a Stripe PaymentIntent.

    Attributes:
        amount: Payment amount in minor units
        currency: ISO 4217 currency code
        idempotency_key: Unique key for idempotent creation
        metadata: Key-value pairs to attach to the PaymentIntent
        payment_method_types: Allowed payment methods (default: ['card'])
    """

    amount: int
    currency: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    payment_method_types: list[str] = field(default_factory=lambda: ["card"])

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (requires_payment_method, succeeded, etc.)
        amount: Requested amount in minor units
        amount_received: Amount actually captured
        currency: Currency code
        client_secret: Secret for client-side confirmation
        latest_charge: Charge id once the intent succeeded
        metadata: Attached metadata
    """

    id: str
    status: str
    amount: int
    amount_received: int
    currency: str
    client_secret: str | None = None
    latest_charge: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount: Refunded amount in minor units
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Original PaymentIntent ID
    """

    id: str
    amount: int
    currency: str
    status: str
    payment_intent_id: str


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for provider API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity, attempt) always yields the same key, so
    a client retry after a timeout replays the original provider call
    instead of creating a second charge.

    Example:
        key = IdempotencyKeyGenerator.generate("create_intent", payment.id)
        # "create_intent:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are class methods - no instance state is maintained.
    Safe to call from Celery workers.

    Usage:
        result = StripeAdapter.create_payment_intent(params)
        result = StripeAdapter.retrieve_payment_intent("pi_xxx")
        refund = StripeAdapter.create_refund("pi_xxx", idempotency_key=key)
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure the Stripe client with API key, timeout and retries."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 2)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @staticmethod
    def _to_intent_result(intent: Any) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            amount_received=intent.amount_received or 0,
            currency=intent.currency,
            client_secret=intent.client_secret,
            latest_charge=intent.get("latest_charge"),
            metadata=dict(intent.metadata or {}),
        )

    # =========================================================================
    # Core Operations
    # =========================================================================

    @classmethod
    def create_payment_intent(
        cls,
        params: CreatePaymentIntentParams,
    ) -> PaymentIntentResult:
        """
        Create a Stripe PaymentIntent with automatic capture.

        Funds land in the platform account, which is the escrow.

        Raises:
            GatewayRejectedError: Invalid parameters or authentication failure
            GatewayUnavailableError: Network failure, rate limit or Stripe outage
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_payment_intent",
            "amount": params.amount,
            "currency": params.currency,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                amount=params.amount,
                currency=params.currency,
                metadata=params.metadata,
                payment_method_types=params.payment_method_types,
                idempotency_key=params.idempotency_key,
            )
        except stripe.StripeError as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "payment_intent_id": intent.id,
                "status": intent.status,
                "duration_ms": duration_ms,
            },
        )

        return cls._to_intent_result(intent)

    @classmethod
    def retrieve_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        The server-side read is the authority on whether a card payment
        succeeded; client-reported status is never trusted.
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            "Stripe operation completed",
            extra={
                **log_context,
                "status": intent.status,
                "duration_ms": duration_ms,
            },
        )

        return cls._to_intent_result(intent)

    @classmethod
    def create_refund(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Create a refund for a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            idempotency_key: Unique key for idempotent refund
            amount: Amount to refund (None for full refund)
            metadata: Optional metadata dict
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        refund_params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "metadata": metadata or {},
        }
        if amount is not None:
            refund_params["amount"] = amount

        try:
            refund = stripe.Refund.create(
                idempotency_key=idempotency_key,
                **refund_params,
            )
        except stripe.StripeError as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": refund.id,
                "status": refund.status,
                "duration_ms": duration_ms,
            },
        )

        return RefundResult(
            id=refund.id,
            amount=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=refund.payment_intent,
        )

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Raises:
            GatewayRejectedError: Invalid signature or payload
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except stripe.SignatureVerificationError as e:
            raise GatewayRejectedError(
                "Invalid webhook signature",
                error_code="INVALID_WEBHOOK_SIGNATURE",
                gateway=GatewayType.CARD,
                provider_code="signature_verification_failed",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise GatewayRejectedError(
                "Invalid webhook payload",
                error_code="INVALID_WEBHOOK_PAYLOAD",
                gateway=GatewayType.CARD,
            ) from e
        return event.to_dict()

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: stripe.StripeError,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            GatewayRejectedError: Card declined, invalid request, bad API key
            GatewayUnavailableError: Rate limit, connection failure, Stripe 5xx
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            raise GatewayRejectedError(
                str(error.user_message or error),
                error_code="CARD_DECLINED",
                gateway=GatewayType.CARD,
                provider_code=decline_code or error.code,
            ) from error

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise GatewayRejectedError(
                str(error),
                error_code="INVALID_PROVIDER_REQUEST",
                gateway=GatewayType.CARD,
                provider_code=error.code,
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise GatewayRejectedError(
                "Stripe authentication failed",
                error_code="PROVIDER_AUTHENTICATION_FAILED",
                gateway=GatewayType.CARD,
                provider_code="authentication_error",
            ) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayUnavailableError(
                "Stripe rate limit exceeded",
                gateway=GatewayType.CARD,
                provider_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Could not connect to Stripe",
                gateway=GatewayType.CARD,
                provider_code="api_connection_error",
            ) from error

        logger.error(
            f"Stripe API error: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            "Stripe service error",
            gateway=GatewayType.CARD,
            provider_code=getattr(error, "code", None) or "api_error",
        ) from error
