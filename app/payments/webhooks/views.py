"""
Webhook endpoint views for the card processor and the regional gateway.

Each view:
1. Verifies the provider signature
2. Creates/retrieves the WebhookEvent record by (provider, event_id)
3. Queues the event for async processing
4. Returns immediately

Usage:
    # In urls.py
    from payments.webhooks.views import regional_webhook, stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
        path("webhooks/regional/", regional_webhook, name="regional_webhook"),
    ]
"""

from __future__ import annotations

import json
import logging
from typing import Any

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import RazorpayAdapter, StripeAdapter
from payments.exceptions import GatewayRejectedError
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


def _accept(provider: str, event_id: str, event_type: str, payload: dict[str, Any]) -> HttpResponse:
    """Store the event once and queue it unless already processed."""
    logger.info(
        "Received webhook",
        extra={"provider": provider, "event_id": event_id, "event_type": event_type},
    )

    webhook_event, created = WebhookEvent.objects.get_or_create(
        provider=provider,
        event_id=event_id,
        defaults={
            "event_type": event_type,
            "payload": payload,
            "status": WebhookEventStatus.PENDING,
        },
    )

    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"provider": provider, "event_id": event_id},
        )
        return HttpResponse("Already processed", status=200)

    if (
        not created
        and webhook_event.status == WebhookEventStatus.FAILED
        and not webhook_event.can_retry
    ):
        logger.warning(
            "Webhook failed for good, not requeued",
            extra={"provider": provider, "event_id": event_id},
        )
        return HttpResponse("Not requeued", status=200)

    from payments.tasks import process_webhook_event

    try:
        process_webhook_event.delay(str(webhook_event.id))
    except Exception:
        # Stays PENDING; retry_failed_webhooks picks it up
        logger.error(
            "Failed to queue webhook",
            extra={"provider": provider, "event_id": event_id},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive card processor events.

    Returns:
        200: Event accepted (new or duplicate)
        400: Missing/invalid signature or malformed event
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event_data = StripeAdapter.verify_webhook_signature(request.body, signature)
    except GatewayRejectedError as e:
        logger.warning(
            "Stripe webhook verification failed",
            extra={"error_code": e.error_code},
        )
        return HttpResponse("Invalid signature", status=400)

    event_id = event_data.get("id")
    event_type = event_data.get("type")
    if not event_id or not event_type:
        logger.warning("Stripe webhook missing id or type")
        return HttpResponse("Invalid event", status=400)

    return _accept(WebhookEvent.Provider.STRIPE, event_id, event_type, event_data)


@csrf_exempt
@require_POST
def regional_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive regional gateway events.

    The gateway sends its event id in the X-Razorpay-Event-Id header;
    the body carries only the event type and entities.
    """
    signature = request.headers.get("X-Razorpay-Signature", "")
    if not signature:
        logger.warning("Webhook received without X-Razorpay-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        RazorpayAdapter.verify_webhook_signature(request.body, signature)
    except GatewayRejectedError as e:
        logger.warning(
            "Regional webhook verification failed",
            extra={"error_code": e.error_code},
        )
        return HttpResponse("Invalid signature", status=400)

    try:
        event_data = json.loads(request.body)
    except ValueError:
        return HttpResponse("Invalid payload", status=400)

    event_id = request.headers.get("X-Razorpay-Event-Id") or event_data.get("id")
    event_type = event_data.get("event")
    if not event_id or not event_type:
        logger.warning("Regional webhook missing event id or type")
        return HttpResponse("Invalid event", status=400)

    return _accept(WebhookEvent.Provider.REGIONAL, event_id, event_type, event_data)
