"""
Reconciliation models for the request/payment divergence sweep.

- ReconciliationRun: One execution of the sweep
- ReconciliationDiscrepancy: One divergence found, queued for operator review

The sweep only detects; nothing here is auto-corrected.

Usage:
    run = ReconciliationRun.objects.create(
        started_at=timezone.now(),
        stale_hold_hours=72,
    )
    ReconciliationDiscrepancy.objects.create(
        run=run,
        discrepancy_type=DiscrepancyType.CANCELLED_WITH_HOLD,
        payment_id=payment.id,
        request_id=payment.request_id,
        request_state="cancelled",
        escrow_state="held",
    )
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class ReconciliationRunStatus(models.TextChoices):
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class DiscrepancyType(models.TextChoices):
    """Divergences between request state, payment state and the ledger."""

    STALE_CONFIRMED_HOLD = "stale_confirmed_hold", "Confirmed but still held"
    CANCELLED_WITH_HOLD = "cancelled_with_hold", "Cancelled but still held"
    SETTLED_NOT_ARCHIVED = "settled_not_archived", "Settled but request not archived"
    MISSING_HOLD_ENTRY = "missing_hold_entry", "Held without ledger entry"
    SETTLEMENT_ENTRY_MISMATCH = "settlement_entry_mismatch", "Settlement entries mismatch"
    DISPUTE_OPEN_AFTER_SETTLEMENT = (
        "dispute_open_after_settlement",
        "Dispute open after settlement",
    )


class ReconciliationRun(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks a reconciliation sweep execution.

    Indexes:
        - (status, started_at): For finding recent runs by status
    """

    started_at = models.DateTimeField(
        help_text="When this reconciliation run started",
    )
    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When this reconciliation run completed (or failed)",
    )

    stale_hold_hours = models.PositiveIntegerField(
        help_text="Threshold used for stale confirmed holds",
    )

    payments_checked = models.PositiveIntegerField(default=0)
    discrepancies_found = models.PositiveIntegerField(default=0)

    status = models.CharField(
        max_length=20,
        choices=ReconciliationRunStatus.choices,
        default=ReconciliationRunStatus.RUNNING,
        db_index=True,
    )
    error_message = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["status", "started_at"], name="recon_run_status_idx"),
        ]
        ordering = ["-started_at"]

    def __str__(self) -> str:
        return f"ReconciliationRun({self.id}, {self.status}, {self.started_at})"

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class ReconciliationDiscrepancy(UUIDPrimaryKeyMixin, BaseModel):
    """
    A divergence found during reconciliation, awaiting operator review.

    Indexes:
        - (reviewed, discrepancy_type): Review queue
        - (payment_id): Lookup by payment
    """

    run = models.ForeignKey(
        ReconciliationRun,
        on_delete=models.CASCADE,
        related_name="discrepancies",
    )

    discrepancy_type = models.CharField(
        max_length=50,
        choices=DiscrepancyType.choices,
        db_index=True,
    )
    payment_id = models.UUIDField(null=True, blank=True)
    request_id = models.UUIDField(null=True, blank=True)
    request_state = models.CharField(max_length=50, blank=True)
    escrow_state = models.CharField(max_length=50, blank=True)
    details = models.JSONField(default=dict, blank=True)

    reviewed = models.BooleanField(default=False, db_index=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    reviewed_by = models.ForeignKey(
        "authentication.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_discrepancies",
    )
    review_notes = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["reviewed", "discrepancy_type"], name="recon_disc_review_idx"),
            models.Index(fields=["payment_id"], name="recon_disc_payment_idx"),
        ]
        ordering = ["-created_at"]
        verbose_name_plural = "Reconciliation discrepancies"

    def __str__(self) -> str:
        return f"Discrepancy({self.discrepancy_type}, payment={self.payment_id})"


__all__ = [
    "DiscrepancyType",
    "ReconciliationRun",
    "ReconciliationRunStatus",
    "ReconciliationDiscrepancy",
]
