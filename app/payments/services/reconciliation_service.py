"""
Reconciliation sweep for request/payment/ledger divergence.

Request state, Payment escrow state and the double-entry ledger are
written in one transaction, so they should never disagree. The sweep
checks that they don't, records what it finds and alerts operators.
Nothing is auto-corrected: every divergence is a money question for a
human.

Detection Categories:
    1. stale_confirmed_hold: request confirmed, funds still held past the threshold
    2. cancelled_with_hold: request cancelled, funds still held
    3. settled_not_archived: payment released/refunded, request not archived
    4. missing_hold_entry: payment left 'none' without a payment_held ledger entry
    5. settlement_entry_mismatch: settlement entries do not add up to the amount
    6. dispute_open_after_settlement: unresolved dispute on settled funds

Usage:
    from payments.services import ReconciliationService

    result = ReconciliationService.run_reconciliation()
    print(f"Found {result.discrepancies_found} discrepancies")

    # Detection without recording a run
    discrepancies = ReconciliationService.detect()
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from django.conf import settings
from django.db.models import Sum
from django.utils import timezone

from core.events import emit
from core.locks import DistributedLock
from core.services import BaseService

from payments.ledger.models import EntryType, LedgerEntry
from payments.models import Payment
from payments.models.reconciliation import (
    DiscrepancyType,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    ReconciliationRunStatus,
)
from payments.state_machines import EscrowState
from service_requests.models import DisputeFlag
from service_requests.states import RequestState

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

RUN_LOCK_KEY = "reconciliation:sweep"
RUN_LOCK_TTL = 600

SETTLED_STATES = (EscrowState.RELEASED, EscrowState.REFUNDED)

# Ledger entry types whose sum must equal the payment amount
SETTLEMENT_ENTRY_TYPES = {
    EscrowState.RELEASED: (EntryType.PAYMENT_RELEASED, EntryType.FEE_COLLECTED),
    EscrowState.REFUNDED: (EntryType.REFUND,),
}


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class Discrepancy:
    """A divergence found by the sweep."""

    discrepancy_type: str
    payment_id: uuid.UUID | None
    request_id: uuid.UUID | None
    request_state: str = ""
    escrow_state: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_payment(cls, discrepancy_type: str, payment: Payment, **details) -> Discrepancy:
        return cls(
            discrepancy_type=discrepancy_type,
            payment_id=payment.id,
            request_id=payment.request_id,
            request_state=payment.request.workflow_state,
            escrow_state=payment.escrow_state,
            details=details,
        )


@dataclass
class ReconciliationRunResult:
    run_id: uuid.UUID
    payments_checked: int
    discrepancies_found: int
    by_type: dict[str, int] = field(default_factory=dict)


# =============================================================================
# Service
# =============================================================================


class ReconciliationService(BaseService):
    """
    Detects divergence between requests, payments and the ledger.

    All methods are class methods - no instance state is maintained.
    """

    @staticmethod
    def stale_hold_hours() -> int:
        return getattr(settings, "RECONCILIATION_STALE_HOLD_HOURS", 72)

    @classmethod
    def run_reconciliation(cls, stale_hold_hours: int | None = None) -> ReconciliationRunResult:
        """
        Run the sweep once and record it.

        Raises:
            LockAcquisitionError: Another sweep is already running
        """
        hours = stale_hold_hours if stale_hold_hours is not None else cls.stale_hold_hours()
        with DistributedLock(RUN_LOCK_KEY, ttl=RUN_LOCK_TTL, blocking=False):
            return cls._run(hours)

    @classmethod
    def _run(cls, stale_hold_hours: int) -> ReconciliationRunResult:
        run = ReconciliationRun.objects.create(
            started_at=timezone.now(),
            stale_hold_hours=stale_hold_hours,
        )
        logger.info("Reconciliation run started", extra={"run_id": str(run.id)})

        try:
            payments_checked = Payment.objects.exclude(escrow_state=EscrowState.NONE).count()
            discrepancies = cls.detect(stale_hold_hours=stale_hold_hours)

            ReconciliationDiscrepancy.objects.bulk_create(
                [
                    ReconciliationDiscrepancy(
                        run=run,
                        discrepancy_type=d.discrepancy_type,
                        payment_id=d.payment_id,
                        request_id=d.request_id,
                        request_state=d.request_state,
                        escrow_state=d.escrow_state,
                        details=d.details,
                    )
                    for d in discrepancies
                ]
            )

            run.payments_checked = payments_checked
            run.discrepancies_found = len(discrepancies)
            run.status = ReconciliationRunStatus.COMPLETED
            run.completed_at = timezone.now()
            run.save()
        except Exception as e:
            run.status = ReconciliationRunStatus.FAILED
            run.error_message = str(e)
            run.completed_at = timezone.now()
            run.save(update_fields=["status", "error_message", "completed_at", "updated_at"])
            logger.exception("Reconciliation run failed", extra={"run_id": str(run.id)})
            raise

        by_type = dict(Counter(d.discrepancy_type for d in discrepancies))
        if discrepancies:
            for d in discrepancies:
                logger.critical(
                    "Reconciliation divergence",
                    extra={
                        "run_id": str(run.id),
                        "discrepancy_type": d.discrepancy_type,
                        "payment_id": str(d.payment_id) if d.payment_id else None,
                        "request_id": str(d.request_id) if d.request_id else None,
                        "request_state": d.request_state,
                        "escrow_state": d.escrow_state,
                    },
                )
            emit(
                "reconciliation.divergence",
                run_id=str(run.id),
                discrepancies_found=len(discrepancies),
                by_type=by_type,
            )

        logger.info(
            "Reconciliation run completed",
            extra={
                "run_id": str(run.id),
                "payments_checked": payments_checked,
                "discrepancies_found": len(discrepancies),
                "duration_seconds": run.duration_seconds,
            },
        )
        return ReconciliationRunResult(
            run_id=run.id,
            payments_checked=payments_checked,
            discrepancies_found=len(discrepancies),
            by_type=by_type,
        )

    # =========================================================================
    # Detection
    # =========================================================================

    @classmethod
    def detect(
        cls,
        now: datetime | None = None,
        stale_hold_hours: int | None = None,
    ) -> list[Discrepancy]:
        """Run every detector and return what they found."""
        now = now or timezone.now()
        hours = stale_hold_hours if stale_hold_hours is not None else cls.stale_hold_hours()
        return [
            *cls._stale_confirmed_holds(now - timedelta(hours=hours)),
            *cls._cancelled_with_hold(),
            *cls._settled_not_archived(),
            *cls._missing_hold_entries(),
            *cls._settlement_entry_mismatches(),
            *cls._disputes_open_after_settlement(),
        ]

    @staticmethod
    def _stale_confirmed_holds(cutoff: datetime) -> list[Discrepancy]:
        payments = Payment.objects.select_related("request").filter(
            escrow_state=EscrowState.HELD,
            request__workflow_state=RequestState.CONFIRMED_BY_REQUESTER,
            request__confirmed_at__lte=cutoff,
        )
        return [
            Discrepancy.for_payment(
                DiscrepancyType.STALE_CONFIRMED_HOLD,
                payment,
                confirmed_at=payment.request.confirmed_at.isoformat(),
            )
            for payment in payments
        ]

    @staticmethod
    def _cancelled_with_hold() -> list[Discrepancy]:
        payments = Payment.objects.select_related("request").filter(
            escrow_state=EscrowState.HELD,
            request__workflow_state=RequestState.CANCELLED,
        )
        return [
            Discrepancy.for_payment(DiscrepancyType.CANCELLED_WITH_HOLD, payment)
            for payment in payments
        ]

    @staticmethod
    def _settled_not_archived() -> list[Discrepancy]:
        payments = Payment.objects.select_related("request").filter(
            escrow_state__in=SETTLED_STATES,
            request__archived_at__isnull=True,
        )
        return [
            Discrepancy.for_payment(DiscrepancyType.SETTLED_NOT_ARCHIVED, payment)
            for payment in payments
        ]

    @staticmethod
    def _missing_hold_entries() -> list[Discrepancy]:
        hold_refs = LedgerEntry.objects.filter(entry_type=EntryType.PAYMENT_HELD).values(
            "reference_id"
        )
        payments = (
            Payment.objects.select_related("request")
            .exclude(escrow_state=EscrowState.NONE)
            .exclude(id__in=hold_refs)
        )
        return [
            Discrepancy.for_payment(DiscrepancyType.MISSING_HOLD_ENTRY, payment)
            for payment in payments
        ]

    @staticmethod
    def _settlement_entry_mismatches() -> list[Discrepancy]:
        payments = list(
            Payment.objects.select_related("request").filter(escrow_state__in=SETTLED_STATES)
        )
        if not payments:
            return []

        totals: dict[tuple[uuid.UUID, str], int] = {}
        rows = (
            LedgerEntry.objects.filter(reference_id__in=[p.id for p in payments])
            .values("reference_id", "entry_type")
            .annotate(total=Sum("amount"))
            .order_by()
        )
        for row in rows:
            totals[(row["reference_id"], row["entry_type"])] = row["total"]

        found = []
        for payment in payments:
            entry_types = SETTLEMENT_ENTRY_TYPES[payment.escrow_state]
            recorded = sum(totals.get((payment.id, t), 0) for t in entry_types)
            if recorded != payment.amount:
                found.append(
                    Discrepancy.for_payment(
                        DiscrepancyType.SETTLEMENT_ENTRY_MISMATCH,
                        payment,
                        expected=payment.amount,
                        recorded=recorded,
                    )
                )
        return found

    @staticmethod
    def _disputes_open_after_settlement() -> list[Discrepancy]:
        disputes = (
            DisputeFlag.objects.select_related("request")
            .filter(resolved=False, request__payments__escrow_state__in=SETTLED_STATES)
            .distinct()
        )
        found = []
        for dispute in disputes:
            payment = (
                dispute.request.payments.filter(escrow_state__in=SETTLED_STATES)
                .order_by("-updated_at")
                .first()
            )
            found.append(
                Discrepancy(
                    discrepancy_type=DiscrepancyType.DISPUTE_OPEN_AFTER_SETTLEMENT,
                    payment_id=payment.id if payment else None,
                    request_id=dispute.request_id,
                    request_state=dispute.request.workflow_state,
                    escrow_state=payment.escrow_state if payment else "",
                    details={"dispute_id": str(dispute.id)},
                )
            )
        return found
