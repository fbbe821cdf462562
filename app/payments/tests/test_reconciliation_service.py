"""
Tests for ReconciliationService.

Divergences cannot be produced through the services, so each test
forces one with queryset updates (or rows built directly by the
factories) and checks the matching detector reports it.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from core.exceptions import LockAcquisitionError
from payments.models.reconciliation import (
    DiscrepancyType,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    ReconciliationRunStatus,
)
from payments.services import EscrowService, ReconciliationService
from payments.state_machines import EscrowState
from payments.tests.factories import PaymentFactory, create_held_payment
from service_requests.models import ServiceRequest
from service_requests.states import RequestState
from service_requests.tests.factories import DisputeFlagFactory, ServiceRequestFactory


def _types(discrepancies):
    return sorted(d.discrepancy_type for d in discrepancies)


@pytest.fixture
def released(confirmed_request, platform_admin):
    create_held_payment(confirmed_request)
    EscrowService.release(confirmed_request.id, platform_admin)
    return confirmed_request


# =============================================================================
# Detection
# =============================================================================


@pytest.mark.django_db
class TestDetect:
    def test_consistent_platform(self, released, in_progress_request, completed_request, platform_admin):
        create_held_payment(in_progress_request)
        create_held_payment(completed_request)
        EscrowService.refund(completed_request.id, platform_admin)

        assert ReconciliationService.detect() == []

    def test_stale_confirmed_hold(self, confirmed_request):
        payment = create_held_payment(confirmed_request)
        ServiceRequest.objects.filter(pk=confirmed_request.pk).update(
            confirmed_at=timezone.now() - timedelta(hours=80)
        )

        found = ReconciliationService.detect(stale_hold_hours=72)

        assert _types(found) == [DiscrepancyType.STALE_CONFIRMED_HOLD]
        assert found[0].payment_id == payment.id
        assert found[0].request_state == RequestState.CONFIRMED_BY_REQUESTER

    def test_recent_confirmation_is_not_stale(self, confirmed_request):
        create_held_payment(confirmed_request)

        assert ReconciliationService.detect(stale_hold_hours=72) == []

    def test_cancelled_with_hold(self, in_progress_request):
        create_held_payment(in_progress_request)
        ServiceRequest.objects.filter(pk=in_progress_request.pk).update(
            workflow_state=RequestState.CANCELLED
        )

        assert _types(ReconciliationService.detect()) == [DiscrepancyType.CANCELLED_WITH_HOLD]

    def test_settled_not_archived(self, released):
        ServiceRequest.objects.filter(pk=released.pk).update(archived_at=None)

        assert _types(ReconciliationService.detect()) == [DiscrepancyType.SETTLED_NOT_ARCHIVED]

    def test_held_without_ledger_entry(self, in_progress_request):
        PaymentFactory(request=in_progress_request, escrow_state=EscrowState.HELD)

        assert _types(ReconciliationService.detect()) == [DiscrepancyType.MISSING_HOLD_ENTRY]

    def test_released_without_settlement_entries(self):
        service_request = ServiceRequestFactory(confirmed=True, archived_at=timezone.now())
        payment = PaymentFactory(request=service_request, escrow_state=EscrowState.RELEASED)

        found = ReconciliationService.detect()

        assert _types(found) == [
            DiscrepancyType.MISSING_HOLD_ENTRY,
            DiscrepancyType.SETTLEMENT_ENTRY_MISMATCH,
        ]
        mismatch = next(d for d in found if d.discrepancy_type == DiscrepancyType.SETTLEMENT_ENTRY_MISMATCH)
        assert mismatch.details == {"expected": payment.amount, "recorded": 0}

    def test_dispute_open_after_settlement(self, released):
        dispute = DisputeFlagFactory(request=released)

        found = ReconciliationService.detect()

        assert _types(found) == [DiscrepancyType.DISPUTE_OPEN_AFTER_SETTLEMENT]
        assert found[0].details == {"dispute_id": str(dispute.id)}
        assert found[0].escrow_state == EscrowState.RELEASED


# =============================================================================
# Runs
# =============================================================================


@pytest.mark.django_db
class TestRunReconciliation:
    def test_records_run_and_discrepancies(self, in_progress_request, mocker):
        emit = mocker.patch("payments.services.reconciliation_service.emit")
        payment = create_held_payment(in_progress_request)
        ServiceRequest.objects.filter(pk=in_progress_request.pk).update(
            workflow_state=RequestState.CANCELLED
        )

        result = ReconciliationService.run_reconciliation()

        run = ReconciliationRun.objects.get(pk=result.run_id)
        assert run.status == ReconciliationRunStatus.COMPLETED
        assert run.payments_checked == 1
        assert run.discrepancies_found == 1
        assert run.stale_hold_hours == 72
        assert run.duration_seconds is not None
        row = ReconciliationDiscrepancy.objects.get(run=run)
        assert row.payment_id == payment.id
        assert row.discrepancy_type == DiscrepancyType.CANCELLED_WITH_HOLD
        assert result.by_type == {DiscrepancyType.CANCELLED_WITH_HOLD: 1}
        emit.assert_called_once_with(
            "reconciliation.divergence",
            run_id=str(run.id),
            discrepancies_found=1,
            by_type={DiscrepancyType.CANCELLED_WITH_HOLD: 1},
        )

    def test_clean_run_emits_nothing(self, db, mocker):
        emit = mocker.patch("payments.services.reconciliation_service.emit")

        result = ReconciliationService.run_reconciliation(stale_hold_hours=1)

        assert result.discrepancies_found == 0
        assert ReconciliationRun.objects.get(pk=result.run_id).stale_hold_hours == 1
        emit.assert_not_called()

    def test_overlapping_run_is_refused(self, db, redis_conn):
        redis_conn.set.return_value = False

        with pytest.raises(LockAcquisitionError):
            ReconciliationService.run_reconciliation()

        assert not ReconciliationRun.objects.exists()

    def test_failed_detection_marks_run_failed(self, db, mocker):
        mocker.patch.object(ReconciliationService, "detect", side_effect=RuntimeError("db gone"))

        with pytest.raises(RuntimeError):
            ReconciliationService.run_reconciliation()

        run = ReconciliationRun.objects.get()
        assert run.status == ReconciliationRunStatus.FAILED
        assert run.error_message == "db gone"
