"""
Notification models.

- Notification: In-app record of a domain event for one recipient
- NotificationDelivery: Email delivery attempt for a notification

Design Decisions:
    - Notifications are immutable once created except for read state;
      title and body are fully rendered strings
    - data carries ids from the event payload only (no PII beyond what the
      recipient already sees)
    - idempotency_key (event + entity + recipient) keeps a redelivered
      event from producing duplicate rows
    - Delivery rows track status for retry and admin inspection

Usage:
    from notifications.models import Notification

    unread = Notification.objects.filter(recipient=user, is_read=False)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel


class DeliveryChannel(models.TextChoices):
    EMAIL = "email", "Email"


class DeliveryStatus(models.TextChoices):
    """
    Status of a notification delivery.

    State Flow:
        PENDING -> SENT
        PENDING -> FAILED (permanent error or retries exhausted)
        PENDING -> SKIPPED (no address)
    """

    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


class SkipReason(models.TextChoices):
    NO_EMAIL = "no_email", "No email address"
    INACTIVE_RECIPIENT = "inactive_recipient", "Recipient is inactive"


class Notification(BaseModel):
    """
    Individual notification record for a user.

    Fields:
        recipient: User receiving the notification (scopes all queries)
        event: Domain event name (e.g., "payment.released")
        title: Rendered title
        body: Rendered body
        data: Event ids for deep links (request_id, payment_id, ...)
        is_read / read_at: Read state
        idempotency_key: Unique per event occurrence and recipient
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    event = models.CharField(max_length=64, db_index=True)
    title = models.CharField(max_length=255)
    body = models.TextField(blank=True)
    data = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    idempotency_key = models.CharField(max_length=255, unique=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["recipient", "is_read", "created_at"], name="notif_recipient_unread_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.event} -> {self.recipient_id}"


class NotificationDelivery(BaseModel):
    """
    Delivery of a notification over one channel.

    Transient failures bump attempt_count and are retried by the task;
    permanent failures record failure_code and stop.
    """

    notification = models.ForeignKey(
        Notification,
        on_delete=models.CASCADE,
        related_name="deliveries",
    )
    channel = models.CharField(
        max_length=16,
        choices=DeliveryChannel.choices,
        default=DeliveryChannel.EMAIL,
    )
    status = models.CharField(
        max_length=16,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        db_index=True,
    )
    attempt_count = models.PositiveSmallIntegerField(default=0)
    sent_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_code = models.CharField(max_length=64, blank=True)
    failure_reason = models.TextField(blank=True)
    skip_reason = models.CharField(max_length=32, choices=SkipReason.choices, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["notification", "channel"],
                name="one_delivery_per_channel",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.channel}:{self.status} ({self.notification_id})"
