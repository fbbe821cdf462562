"""
Webhook event handlers for card and regional gateway events.

Handlers are registered per (provider, event type). A handler either
returns normally (event handled or intentionally ignored) or raises;
a raised error marks the WebhookEvent FAILED and lets the task retry.

Captures go through PaymentService.capture_from_provider, so a webhook
and a client-side confirm racing for the same payment produce exactly
one hold.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler(WebhookEvent.Provider.STRIPE, "charge.dispute.created")
    def handle_card_dispute(webhook_event: WebhookEvent) -> None:
        ...

    dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from core.exceptions import ValidationError

from payments.gateways import CaptureResult
from payments.models import Payment, WebhookEvent
from payments.services import PaymentService
from payments.state_machines import GatewayType, ProviderRefundStatus, TrustLevel

logger = logging.getLogger(__name__)

WebhookHandler = Callable[[WebhookEvent], Any]


# =============================================================================
# Handler Registry
# =============================================================================


WEBHOOK_HANDLERS: dict[tuple[str, str], WebhookHandler] = {}


def register_handler(provider: str, event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Args:
        provider: WebhookEvent.Provider value
        event_type: Provider event type (e.g., "payment_intent.succeeded")
    """

    def decorator(func: WebhookHandler) -> WebhookHandler:
        WEBHOOK_HANDLERS[(provider, event_type)] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> Any:
    """
    Route a stored event to its handler.

    Unknown event types are acknowledged and ignored so the provider
    stops redelivering them.
    """
    handler = WEBHOOK_HANDLERS.get((webhook_event.provider, webhook_event.event_type))

    if handler is None:
        logger.info(
            "No handler registered for webhook event",
            extra={
                "provider": webhook_event.provider,
                "event_type": webhook_event.event_type,
                "event_id": webhook_event.event_id,
            },
        )
        return None

    return handler(webhook_event)


def _stripe_object(webhook_event: WebhookEvent) -> dict[str, Any]:
    obj = webhook_event.payload.get("data", {}).get("object")
    if not obj:
        raise ValidationError(
            "Webhook payload has no data.object",
            error_code="MALFORMED_WEBHOOK",
            details={"event_id": webhook_event.event_id},
        )
    return obj


def _regional_entity(webhook_event: WebhookEvent, name: str) -> dict[str, Any]:
    entity = webhook_event.payload.get("payload", {}).get(name, {}).get("entity")
    if not entity:
        raise ValidationError(
            f"Webhook payload has no {name}.entity",
            error_code="MALFORMED_WEBHOOK",
            details={"event_id": webhook_event.event_id},
        )
    return entity


def _mark_provider_refund_completed(gateway: str, reference: str, refund_id: str) -> int:
    """Returns the number of payments updated (0 when nothing matched)."""
    updated = Payment.objects.filter(
        gateway=gateway,
        gateway_reference=reference,
        provider_refund_status__in=[
            ProviderRefundStatus.PENDING,
            ProviderRefundStatus.SUBMITTED,
        ],
    ).update(
        provider_refund_status=ProviderRefundStatus.COMPLETED,
        provider_refund_reference=refund_id,
    )
    logger.info(
        "Provider refund completed",
        extra={"gateway": gateway, "reference": reference, "refund_id": refund_id, "updated": updated},
    )
    return updated


# =============================================================================
# Card processor (Stripe)
# =============================================================================


@register_handler(WebhookEvent.Provider.STRIPE, "payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> Payment | None:
    intent = _stripe_object(webhook_event)
    capture = CaptureResult(
        transaction_id=intent.get("latest_charge") or intent["id"],
        captured_amount=intent.get("amount_received", 0),
        currency=intent.get("currency", ""),
        trust_level=TrustLevel.VERIFIED,
        metadata={"payment_intent_id": intent["id"], "source": "webhook"},
    )
    return PaymentService.capture_from_provider(GatewayType.CARD, intent["id"], capture)


@register_handler(WebhookEvent.Provider.STRIPE, "payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> None:
    intent = _stripe_object(webhook_event)
    error = intent.get("last_payment_error") or {}
    updated = Payment.objects.filter(
        gateway=GatewayType.CARD,
        gateway_reference=intent["id"],
    ).update(failure_reason=error.get("message") or "Payment failed")
    logger.warning(
        "Card payment failed at provider",
        extra={
            "payment_intent_id": intent["id"],
            "provider_code": error.get("code"),
            "updated": updated,
        },
    )


@register_handler(WebhookEvent.Provider.STRIPE, "charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> None:
    charge = _stripe_object(webhook_event)
    refunds = (charge.get("refunds") or {}).get("data") or []
    refund_id = refunds[0]["id"] if refunds else ""
    _mark_provider_refund_completed(GatewayType.CARD, charge.get("payment_intent", ""), refund_id)


# =============================================================================
# Regional gateway (Razorpay)
# =============================================================================


@register_handler(WebhookEvent.Provider.REGIONAL, "payment.captured")
def handle_regional_payment_captured(webhook_event: WebhookEvent) -> Payment | None:
    entity = _regional_entity(webhook_event, "payment")
    capture = CaptureResult(
        transaction_id=entity["id"],
        captured_amount=entity.get("amount", 0),
        currency=entity.get("currency", ""),
        trust_level=TrustLevel.VERIFIED,
        metadata={"order_id": entity.get("order_id"), "method": entity.get("method", ""), "source": "webhook"},
    )
    return PaymentService.capture_from_provider(
        GatewayType.REGIONAL_GATEWAY,
        entity.get("order_id", ""),
        capture,
    )


@register_handler(WebhookEvent.Provider.REGIONAL, "refund.processed")
def handle_regional_refund_processed(webhook_event: WebhookEvent) -> None:
    refund = _regional_entity(webhook_event, "refund")
    payment = webhook_event.payload.get("payload", {}).get("payment", {}).get("entity", {})
    order_id = payment.get("order_id")
    if not order_id:
        # Refund events without the payment entity carry only the pay_ id
        match = Payment.objects.filter(
            gateway=GatewayType.REGIONAL_GATEWAY,
            gateway_transaction_id=refund.get("payment_id", ""),
        ).values_list("gateway_reference", flat=True).first()
        order_id = match or ""
    _mark_provider_refund_completed(GatewayType.REGIONAL_GATEWAY, order_id, refund["id"])
