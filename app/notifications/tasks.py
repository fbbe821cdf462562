"""
Celery tasks for notification delivery.

Tasks:
    send_email_notification: Deliver a notification by email
    send_operator_alert: Mail the operator mailbox (ADMIN_NOTIFICATION_EMAIL)

Design:
    - Tasks receive delivery_id instead of notification_id
    - Permanent vs transient SMTP errors are classified for retry logic
    - Tasks are idempotent: re-running on a non-PENDING delivery is a no-op
    - Retries exhausted on a transient error mark the delivery FAILED

Usage:
    from notifications.tasks import send_email_notification

    # Queued by NotificationService.notify_event() after commit
    send_email_notification.delay(delivery_id)
"""

from __future__ import annotations

import logging
import smtplib

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone as django_timezone

from notifications.models import DeliveryStatus, NotificationDelivery, SkipReason

logger = logging.getLogger(__name__)

MAX_EMAIL_RETRIES = 3

# Rejections that another attempt will not fix
PERMANENT_SMTP_ERRORS = (
    smtplib.SMTPRecipientsRefused,
    smtplib.SMTPSenderRefused,
    smtplib.SMTPNotSupportedError,
)


class DeliveryError(Exception):
    """Delivery failure with a classification for retry logic."""

    def __init__(self, message: str, code: str, is_permanent: bool = False):
        super().__init__(message)
        self.code = code
        self.is_permanent = is_permanent


def _get_delivery(delivery_id: int) -> NotificationDelivery | None:
    """
    Fetch delivery with related notification.

    Returns None if delivery not found or not in PENDING status.
    """
    try:
        delivery = NotificationDelivery.objects.select_related(
            "notification",
            "notification__recipient",
        ).get(id=delivery_id)
    except NotificationDelivery.DoesNotExist:
        logger.warning("Delivery not found", extra={"delivery_id": delivery_id})
        return None

    if delivery.status != DeliveryStatus.PENDING:
        logger.info(
            "Delivery not pending, skipping",
            extra={"delivery_id": delivery_id, "status": delivery.status},
        )
        return None
    return delivery


def _mark_sent(delivery: NotificationDelivery) -> None:
    delivery.status = DeliveryStatus.SENT
    delivery.sent_at = django_timezone.now()
    delivery.attempt_count += 1
    delivery.save(update_fields=["status", "sent_at", "attempt_count", "updated_at"])


def _mark_failed(delivery: NotificationDelivery, error: DeliveryError) -> None:
    delivery.status = DeliveryStatus.FAILED
    delivery.failed_at = django_timezone.now()
    delivery.failure_reason = str(error)
    delivery.failure_code = error.code
    delivery.attempt_count += 1
    delivery.save(
        update_fields=[
            "status",
            "failed_at",
            "failure_reason",
            "failure_code",
            "attempt_count",
            "updated_at",
        ]
    )


def _mark_skipped(delivery: NotificationDelivery, reason: str) -> None:
    delivery.status = DeliveryStatus.SKIPPED
    delivery.skip_reason = reason
    delivery.save(update_fields=["status", "skip_reason", "updated_at"])


def _classify(exc: Exception) -> DeliveryError:
    if isinstance(exc, PERMANENT_SMTP_ERRORS):
        return DeliveryError(str(exc), code=type(exc).__name__, is_permanent=True)
    return DeliveryError(str(exc), code=type(exc).__name__)


@shared_task(
    bind=True,
    autoretry_for=(DeliveryError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": MAX_EMAIL_RETRIES},
)
def send_email_notification(self, delivery_id: int) -> bool:
    """
    Send a notification by email.

    Flow:
        1. Fetch delivery + notification (no-op unless PENDING)
        2. Skip if the recipient is inactive or has no email
        3. Send through the configured EMAIL_BACKEND
        4. Update delivery status

    Returns:
        True if sent or skipped, False on permanent failure

    Raises:
        DeliveryError: On transient failure (triggers retry)
    """
    delivery = _get_delivery(delivery_id)
    if delivery is None:
        return True

    notification = delivery.notification
    recipient = notification.recipient

    if not recipient.is_active:
        _mark_skipped(delivery, SkipReason.INACTIVE_RECIPIENT)
        return True
    if not recipient.email:
        _mark_skipped(delivery, SkipReason.NO_EMAIL)
        logger.info("Email skipped, recipient has no email", extra={"delivery_id": delivery_id})
        return True

    try:
        send_mail(
            subject=notification.title,
            message=notification.body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient.email],
        )
    except (smtplib.SMTPException, OSError) as exc:
        error = _classify(exc)
        if error.is_permanent or self.request.retries >= MAX_EMAIL_RETRIES:
            _mark_failed(delivery, error)
            logger.warning(
                "Email notification failed",
                extra={
                    "delivery_id": delivery_id,
                    "failure_code": error.code,
                    "permanent": error.is_permanent,
                    "attempts": delivery.attempt_count,
                },
            )
            return False

        delivery.attempt_count += 1
        delivery.save(update_fields=["attempt_count", "updated_at"])
        logger.warning(
            "Email notification transiently failed, will retry",
            extra={"delivery_id": delivery_id, "failure_code": error.code},
        )
        raise error from exc

    _mark_sent(delivery)
    logger.info(
        "Email notification sent",
        extra={"delivery_id": delivery_id, "event": notification.event},
    )
    return True


@shared_task(
    bind=True,
    autoretry_for=(smtplib.SMTPException, OSError),
    retry_backoff=True,
    retry_kwargs={"max_retries": MAX_EMAIL_RETRIES},
)
def send_operator_alert(self, subject: str, body: str) -> bool:
    """Mail ADMIN_NOTIFICATION_EMAIL. Returns False when no mailbox is configured."""
    address = settings.ADMIN_NOTIFICATION_EMAIL
    if not address:
        return False

    send_mail(
        subject=f"[Escrow] {subject}",
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[address],
    )
    logger.info("Operator alert sent", extra={"subject": subject})
    return True
