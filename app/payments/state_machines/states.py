"""
State enums for payment models.

These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Payment escrow states:
    none → held → released
    none → held → refunded
    released and refunded are terminal; nothing skips held.

Webhook event processing:
    pending → processing → processed
    pending → processing → failed (retried by Celery)
"""

from django.db import models


class EscrowState(models.TextChoices):
    """
    Money state of a Payment, independent of the request's workflow state.

    Terminal states: RELEASED, REFUNDED
    """

    NONE = "none", "None"
    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class GatewayType(models.TextChoices):
    """Interchangeable payment rails that can fund escrow."""

    CARD = "card", "Card"
    REGIONAL_GATEWAY = "regional_gateway", "Regional Gateway"
    MANUAL_TRANSFER = "manual_transfer", "Manual Transfer"


class TrustLevel(models.TextChoices):
    """
    Integrity of the capture proof.

    VERIFIED: provider-signed confirmation (card, regional gateway)
    LOW: human-entered reference only (manual transfer)
    """

    VERIFIED = "verified", "Verified"
    LOW = "low", "Low"


class ProviderRefundStatus(models.TextChoices):
    """Status of the refund at the payment provider, after the ledger refund."""

    NOT_REQUIRED = "not_required", "Not Required"
    PENDING = "pending", "Pending"
    SUBMITTED = "submitted", "Submitted"
    COMPLETED = "completed", "Completed"
    MANUAL = "manual", "Manual Pay-back Required"
    FAILED = "failed", "Failed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "EscrowState",
    "GatewayType",
    "ProviderRefundStatus",
    "TrustLevel",
    "WebhookEventStatus",
]
