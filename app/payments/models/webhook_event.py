"""
WebhookEvent model for provider webhook tracking.

Stores every webhook received from the card processor or the regional
gateway. The (provider, event_id) unique constraint makes duplicate
deliveries detectable.

Usage:
    event, created = WebhookEvent.objects.get_or_create(
        provider=WebhookEvent.Provider.STRIPE,
        event_id="evt_1234567890",
        defaults={"event_type": "payment_intent.succeeded", "payload": payload},
    )
    if not created and event.is_processed:
        return HttpResponse(status=200)
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import WebhookEventStatus

MAX_WEBHOOK_RETRIES = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks provider webhook events for idempotent processing.

    Processing Flow:
        1. Webhook arrives, signature verified
        2. Insert/get WebhookEvent by (provider, event_id)
        3. Already processed -> 200 (duplicate)
        4. Otherwise queue process_webhook_event
        5. Task marks PROCESSING, routes to handler, marks PROCESSED or FAILED

    Fields:
        provider: stripe or regional
        event_id: Provider event id
        event_type: Provider event type
        payload: Full JSON payload
        status: Processing status
        processed_at: When processing succeeded
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    class Provider(models.TextChoices):
        STRIPE = "stripe", "Stripe"
        REGIONAL = "regional", "Regional Gateway"

    provider = models.CharField(
        max_length=20,
        choices=Provider.choices,
        help_text="Webhook source",
    )

    event_id = models.CharField(
        max_length=255,
        help_text="Provider event id (unique per provider)",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Provider event type (e.g., 'payment_intent.succeeded')",
    )

    payload = models.JSONField(
        help_text="Full webhook payload",
    )

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    retry_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "event_id"],
                name="unique_webhook_event_per_provider",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_idx"),
            models.Index(fields=["event_type", "created_at"], name="webhook_type_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.provider}:{self.event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return (
            self.status == WebhookEventStatus.FAILED
            and self.retry_count < MAX_WEBHOOK_RETRIES
        )

    def mark_processing(self) -> None:
        """Does not save."""
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """Does not save."""
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """Does not save."""
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
