"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing card/regional webhook events
- Retrying failed webhook events and resetting stuck ones
- Issuing provider refunds after a ledger refund commits
- The periodic reconciliation sweep

Usage:
    from payments.tasks import issue_provider_refund, process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

    # Queued by EscrowService on commit of a refund
    issue_provider_refund.delay(str(payment.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.db import transaction
from django.utils import timezone

from core.exceptions import LockAcquisitionError

from payments.exceptions import (
    AlreadyCapturedError,
    AmountMismatchError,
    GatewayRejectedError,
    GatewayUnavailableError,
    ReconciliationDivergenceError,
)
from payments.gateways import get_gateway
from payments.models import Payment, WebhookEvent
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES
from payments.state_machines import ProviderRefundStatus, WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_PROVIDER_REFUND_RETRIES = 6
STUCK_PROCESSING_THRESHOLD_MINUTES = 30
UNQUEUED_THRESHOLD_MINUTES = 5

# Money guards; retrying cannot change the outcome
FATAL_WEBHOOK_ERRORS = (AmountMismatchError, AlreadyCapturedError, ReconciliationDivergenceError)


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    dont_autoretry_for=FATAL_WEBHOOK_ERRORS,
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored webhook event.

    1. Loads the WebhookEvent by ID
    2. Skips it if already processed
    3. Marks as processing
    4. Dispatches to the registered handler
    5. Marks as processed, or failed and re-raises so Celery retries.
       Money guard failures are failed for good and never retried.
    """
    from payments.webhooks.handlers import dispatch_webhook

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={"webhook_event_id": str(webhook_event_id), "event_id": webhook_event.event_id},
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    webhook_event.mark_processing()
    webhook_event.save(update_fields=["status", "retry_count", "updated_at"])

    log_context = {
        "webhook_event_id": str(webhook_event_id),
        "provider": webhook_event.provider,
        "event_id": webhook_event.event_id,
        "event_type": webhook_event.event_type,
        "retry_count": webhook_event.retry_count,
    }

    try:
        with transaction.atomic():
            dispatch_webhook(webhook_event)
    except FATAL_WEBHOOK_ERRORS as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.retry_count = MAX_WEBHOOK_RETRIES
        webhook_event.save(update_fields=["status", "error_message", "retry_count", "updated_at"])
        logger.critical("Webhook blocked by money guard", extra=log_context, exc_info=True)
        raise
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])
        logger.exception("Webhook processing failed", extra=log_context)
        raise

    webhook_event.mark_processed()
    webhook_event.save(update_fields=["status", "processed_at", "error_message", "updated_at"])
    logger.info("Webhook processed", extra=log_context)
    return {"status": "processed", "webhook_event_id": str(webhook_event_id)}


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Re-queue failed webhooks under the retry cap, and pending ones
    whose initial queueing never happened.
    """
    unqueued_before = timezone.now() - timedelta(minutes=UNQUEUED_THRESHOLD_MINUTES)
    failed = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    )
    pending = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PENDING,
        created_at__lt=unqueued_before,
    )

    queued_count = 0
    for webhook in (failed | pending).order_by("created_at")[:100]:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1

    if queued_count:
        logger.info("Queued webhooks for retry", extra={"queued_count": queued_count})
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Reset webhooks stuck in PROCESSING (worker crashed mid-task) to
    FAILED so retry_failed_webhooks picks them up.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    reset_count = 0
    for webhook in WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    ):
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save(update_fields=["status", "error_message", "updated_at"])
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={"webhook_event_id": str(webhook.id), "event_id": webhook.event_id},
        )

    return {"reset_count": reset_count}


# =============================================================================
# Provider Refunds
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(GatewayUnavailableError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": MAX_PROVIDER_REFUND_RETRIES},
    acks_late=True,
)
def issue_provider_refund(self, payment_id: str) -> dict:
    """
    Return captured funds at the provider after a ledger refund.

    The ledger refund is final; this task only tracks the provider side
    in provider_refund_status. Unavailability retries with backoff; a
    provider rejection is permanent and marks the payment FAILED for
    operators to handle.
    """
    payment = Payment.objects.filter(id=payment_id).first()
    if payment is None:
        logger.error("Provider refund for unknown payment", extra={"payment_id": str(payment_id)})
        return {"status": "not_found", "payment_id": str(payment_id)}

    if payment.provider_refund_status not in (
        ProviderRefundStatus.PENDING,
        ProviderRefundStatus.FAILED,
    ):
        return {"status": payment.provider_refund_status, "payment_id": str(payment_id)}

    log_context = {
        "payment_id": str(payment_id),
        "gateway": payment.gateway,
        "attempt": self.request.retries + 1,
    }

    try:
        result = get_gateway(payment.gateway).refund(payment)
    except GatewayRejectedError as e:
        Payment.objects.filter(id=payment.id).update(
            provider_refund_status=ProviderRefundStatus.FAILED,
            failure_reason=f"Provider refund rejected: {e.provider_code or e.error_code}",
            updated_at=timezone.now(),
        )
        logger.error(
            "Provider refund rejected",
            extra={**log_context, "provider_code": e.provider_code},
        )
        return {"status": ProviderRefundStatus.FAILED, "payment_id": str(payment_id)}
    except GatewayUnavailableError:
        logger.warning("Provider refund deferred, gateway unavailable", extra=log_context)
        raise

    Payment.objects.filter(id=payment.id).update(
        provider_refund_status=result.status,
        provider_refund_reference=result.reference,
        updated_at=timezone.now(),
    )
    logger.info(
        "Provider refund issued",
        extra={**log_context, "refund_reference": result.reference, "status": result.status},
    )
    return {"status": result.status, "payment_id": str(payment_id)}


# =============================================================================
# Reconciliation
# =============================================================================


@shared_task
def run_reconciliation() -> dict:
    """
    Periodic divergence sweep (celery-beat, see migration 0002).

    Overlapping runs are skipped: the sweep holds a distributed lock.
    """
    from payments.services import ReconciliationService

    try:
        result = ReconciliationService.run_reconciliation()
    except LockAcquisitionError:
        logger.info("Reconciliation already running, skipping")
        return {"status": "skipped"}

    return {
        "status": "completed",
        "run_id": str(result.run_id),
        "payments_checked": result.payments_checked,
        "discrepancies_found": result.discrepancies_found,
    }
