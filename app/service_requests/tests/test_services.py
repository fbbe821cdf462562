"""
Tests for RequestLifecycleService.

Covers each transition end to end (guard, compare-and-set, history row,
domain event), the races the version check settles, and the money side
effects of confirm and cancel.
"""

import uuid
from datetime import timedelta

import pytest
from django.db.models import F
from django.utils import timezone
from freezegun import freeze_time

from core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StaleRecordError,
    ValidationError,
)
from payments.ledger.models import AccountType
from payments.ledger.services import ledger
from payments.models import Payment
from payments.state_machines import EscrowState
from payments.tests.factories import create_held_payment
from service_requests.exceptions import (
    CancelWindowExpiredError,
    DisputeFrozenError,
    ForbiddenActionError,
)
from service_requests.models import DisputeFlag, RequestTransition, ServiceRequest
from service_requests.services import RequestLifecycleService as service
from service_requests.states import RequestState
from service_requests.tests.factories import DisputeFlagFactory, ServiceRequestFactory


def _details(**overrides):
    return {
        "service_category": "elder_care",
        "service_location": "Indiranagar, Bengaluru",
        "scheduled_date": timezone.localdate() + timedelta(days=2),
        **overrides,
    }


def _reload(service_request):
    return ServiceRequest.objects.get(pk=service_request.pk)


# =============================================================================
# Create
# =============================================================================


@pytest.mark.django_db
class TestCreate:
    def test_creates_open_request(self, requester, emitted):
        service_request = service.create(requester, **_details(description="Weekly groceries"))

        assert service_request.workflow_state == RequestState.REQUESTED
        assert service_request.version == 1
        window = service_request.cancel_deadline - service_request.created_at
        assert abs(window - timedelta(hours=2)) < timedelta(seconds=5)
        assert service_request.transitions.get().action == "create"
        assert emitted.call_args.args[0] == "request.created"
        assert emitted.call_args.kwargs["requester_id"] == requester.pk

    def test_helper_cannot_create(self, helper):
        with pytest.raises(ForbiddenActionError):
            service.create(helper, **_details())

    def test_required_fields(self, requester):
        with pytest.raises(ValidationError) as exc_info:
            service.create(requester, **_details(service_location="  ", scheduled_date=None))

        assert set(exc_info.value.details) == {"service_location", "scheduled_date"}
        assert not ServiceRequest.objects.exists()

    def test_preferred_helper_must_be_helper(self, requester):
        other_requester = ServiceRequestFactory().requester

        with pytest.raises(ValidationError):
            service.create(requester, **_details(preferred_helper=other_requester))


# =============================================================================
# Helper actions
# =============================================================================


@pytest.mark.django_db
class TestAccept:
    def test_accept(self, open_request, helper, emitted):
        service_request = service.accept(open_request.id, helper)

        stored = _reload(open_request)
        assert stored.workflow_state == RequestState.ACCEPTED
        assert stored.helper == helper
        assert stored.accepted_at is not None
        assert stored.version == 2
        assert service_request.version == 2

        transition = stored.transitions.get(action="accept")
        assert (transition.from_state, transition.to_state) == ("requested", "accepted")
        assert transition.actor_role == "helper"
        assert emitted.call_args.args[0] == "request.accepted"
        assert emitted.call_args.kwargs["helper_id"] == helper.pk

    def test_second_helper_loses(self, open_request, helper, other_helper):
        service.accept(open_request.id, helper)

        with pytest.raises(ConflictError) as exc_info:
            service.accept(open_request.id, other_helper)

        assert exc_info.value.error_code == "REQUEST_NOT_OPEN"
        assert _reload(open_request).helper == helper

    def test_stale_version(self, open_request, helper, other_helper):
        service.accept(open_request.id, helper, expected_version=1)

        with pytest.raises(StaleRecordError):
            service.accept(open_request.id, other_helper, expected_version=1)

    def test_compare_and_set_detects_concurrent_write(self, open_request):
        """The in-memory copy read version 1; another writer got there first."""
        ServiceRequest.objects.filter(pk=open_request.pk).update(version=F("version") + 1)

        with pytest.raises(ConflictError) as exc_info:
            service._commit(open_request, RequestState.REQUESTED, {"viewed_by_helper": True})

        assert exc_info.value.error_code == "CONCURRENT_MODIFICATION"

    def test_unknown_request(self, helper):
        with pytest.raises(NotFoundError):
            service.accept(uuid.uuid4(), helper)


@pytest.mark.django_db
class TestDeclineAndRelist:
    def test_decline_records_helper(self, open_request, helper):
        service.decline(open_request.id, helper, notes="Too far")

        stored = _reload(open_request)
        assert stored.workflow_state == RequestState.DECLINED
        assert list(stored.declined_by.all()) == [helper]
        assert stored.transitions.get(action="decline").notes == "Too far"

    def test_relist_reopens_to_others_only(self, requester, helper, other_helper):
        targeted = ServiceRequestFactory(requester=requester, preferred_helper=helper)
        service.decline(targeted.id, helper)

        relisted = service.relist(targeted.id, requester)

        assert relisted.workflow_state == RequestState.REQUESTED
        assert _reload(targeted).preferred_helper is None
        with pytest.raises(PermissionDeniedError) as exc_info:
            service.accept(targeted.id, helper)
        assert exc_info.value.error_code == "PREVIOUSLY_DECLINED"
        assert service.accept(targeted.id, other_helper).helper == other_helper

    def test_relist_requires_declined(self, open_request, requester):
        with pytest.raises(InvalidTransitionError):
            service.relist(open_request.id, requester)


@pytest.mark.django_db
class TestWork:
    def test_start_then_complete(self, accepted_request, helper, emitted):
        service.start(accepted_request.id, helper)
        service_request = service.complete(accepted_request.id, helper, notes="Done by 6pm")

        assert service_request.workflow_state == RequestState.COMPLETED_BY_HELPER
        assert [t.action for t in service_request.transitions.all()] == ["start", "complete"]
        assert [c.args[0] for c in emitted.call_args_list] == ["request.started", "request.completed"]

    def test_complete_before_start(self, accepted_request, helper):
        with pytest.raises(InvalidTransitionError):
            service.complete(accepted_request.id, helper)

    def test_mark_viewed_is_informational(self, open_request, helper):
        service.mark_viewed(open_request.id, helper)

        stored = _reload(open_request)
        assert stored.viewed_by_helper is True
        assert stored.workflow_state == RequestState.REQUESTED
        assert not stored.transitions.exists()


# =============================================================================
# Requester actions
# =============================================================================


@pytest.mark.django_db
class TestConfirm:
    def test_confirm_with_held_funds_stays_active(self, completed_request, requester):
        create_held_payment(completed_request)

        service_request = service.confirm(completed_request.id, requester)

        assert service_request.workflow_state == RequestState.CONFIRMED_BY_REQUESTER
        assert _reload(completed_request).archived_at is None

    def test_confirm_without_funds_archives(self, completed_request, requester):
        service.confirm(completed_request.id, requester)

        assert _reload(completed_request).archived_at is not None

    def test_confirm_blocked_by_dispute(self, completed_request, requester):
        DisputeFlagFactory(request=completed_request)

        with pytest.raises(DisputeFrozenError):
            service.confirm(completed_request.id, requester)


@pytest.mark.django_db
class TestCancel:
    def test_cancel_refunds_held_funds(self, accepted_request, requester):
        payment = create_held_payment(accepted_request)

        service_request = service.cancel(accepted_request.id, requester, notes="Plans changed")

        stored_payment = Payment.objects.get(pk=payment.pk)
        assert service_request.workflow_state == RequestState.CANCELLED
        assert stored_payment.escrow_state == EscrowState.REFUNDED
        assert stored_payment.refunded_by is None
        assert _reload(accepted_request).archived_at is not None
        escrow = ledger.platform_account(AccountType.PLATFORM_ESCROW, "inr")
        assert escrow.get_balance() == 0

    def test_cancel_unfunded_request_archives(self, open_request, requester):
        service.cancel(open_request.id, requester)

        stored = _reload(open_request)
        assert stored.workflow_state == RequestState.CANCELLED
        assert stored.archived_at is not None

    def test_cancel_after_window(self, requester):
        service_request = ServiceRequestFactory(requester=requester, window_closed=True)

        with pytest.raises(CancelWindowExpiredError):
            service.cancel(service_request.id, requester)

        assert _reload(service_request).workflow_state == RequestState.REQUESTED

    def test_cancel_window_closes_on_the_clock(self, requester, emitted):
        with freeze_time("2026-03-02 09:00:00") as frozen:
            service_request = service.create(requester, **_details())

            frozen.tick(timedelta(hours=2, seconds=1))

            with pytest.raises(CancelWindowExpiredError):
                service.cancel(service_request.id, requester)

    @freeze_time("2026-03-02 09:00:00")
    def test_cancel_on_the_deadline(self, requester, emitted):
        service_request = service.create(requester, **_details())

        with freeze_time("2026-03-02 11:00:00"):
            service.cancel(service_request.id, requester)

        assert _reload(service_request).workflow_state == RequestState.CANCELLED

    def test_cancel_after_completion(self, completed_request, requester):
        with pytest.raises(InvalidTransitionError):
            service.cancel(completed_request.id, requester)


@pytest.mark.django_db
class TestRate:
    def test_rate(self, confirmed_request, requester):
        service.rate(confirmed_request.id, requester, 5, "Very kind")

        stored = _reload(confirmed_request)
        assert (stored.rating, stored.feedback) == (5, "Very kind")

    @pytest.mark.parametrize("rating", [0, 6, True, "5"])
    def test_rating_range(self, confirmed_request, requester, rating):
        with pytest.raises(ValidationError):
            service.rate(confirmed_request.id, requester, rating)

    def test_rate_once(self, confirmed_request, requester):
        service.rate(confirmed_request.id, requester, 4)

        with pytest.raises(ConflictError):
            service.rate(confirmed_request.id, requester, 5)


# =============================================================================
# Disputes
# =============================================================================


@pytest.mark.django_db
class TestRaiseDispute:
    def test_helper_raises_dispute(self, in_progress_request, helper, emitted):
        dispute = service.raise_dispute(in_progress_request.id, helper, reason="  Requester absent  ")

        assert dispute.reason == "Requester absent"
        assert dispute.raised_by_role == "helper"
        assert dispute.state_at_raise == RequestState.IN_PROGRESS
        assert _reload(in_progress_request).workflow_state == RequestState.IN_PROGRESS
        assert emitted.call_args.args[0] == "dispute.raised"
        assert emitted.call_args.kwargs["dispute_id"] == str(dispute.id)

    def test_reason_required(self, in_progress_request, requester):
        with pytest.raises(ValidationError):
            service.raise_dispute(in_progress_request.id, requester, reason=" ")

        assert not DisputeFlag.objects.exists()

    def test_dispute_freezes_both_parties(self, in_progress_request, requester, helper):
        service.raise_dispute(in_progress_request.id, requester, reason="No show")

        with pytest.raises(DisputeFrozenError):
            service.complete(in_progress_request.id, helper)
        with pytest.raises(DisputeFrozenError):
            service.cancel(in_progress_request.id, requester)

    def test_one_open_dispute(self, in_progress_request, requester, helper):
        service.raise_dispute(in_progress_request.id, requester, reason="No show")

        with pytest.raises(ConflictError) as exc_info:
            service.raise_dispute(in_progress_request.id, helper, reason="I was there")

        assert exc_info.value.error_code == "DISPUTE_ALREADY_OPEN"


# =============================================================================
# Admin
# =============================================================================


@pytest.mark.django_db
class TestReassign:
    def test_reassign(self, in_progress_request, platform_admin, helper, other_helper, emitted):
        service_request = service.reassign(
            in_progress_request.id, platform_admin, other_helper, notes="Original helper unwell"
        )

        assert service_request.helper == other_helper
        assert service_request.workflow_state == RequestState.IN_PROGRESS
        assert emitted.call_args.args[0] == "request.reassigned"
        assert emitted.call_args.kwargs["previous_helper_id"] == helper.pk
        assert RequestTransition.objects.get(action="reassign").actor == platform_admin

    def test_same_helper(self, in_progress_request, platform_admin, helper):
        with pytest.raises(ValidationError):
            service.reassign(in_progress_request.id, platform_admin, helper)

    def test_target_must_be_helper(self, in_progress_request, platform_admin, requester):
        with pytest.raises(ValidationError):
            service.reassign(in_progress_request.id, platform_admin, requester)

    def test_requester_cannot_reassign(self, in_progress_request, requester, other_helper):
        with pytest.raises(ForbiddenActionError):
            service.reassign(in_progress_request.id, requester, other_helper)


@pytest.mark.django_db
class TestResolveDispute:
    def test_unfunded_dispute_is_dismissed(
        self, in_progress_request, helper, platform_admin, emitted
    ):
        service.raise_dispute(in_progress_request.id, helper, reason="Requester never paid")

        dispute = service.resolve_dispute(in_progress_request.id, platform_admin, notes="Talked to both")

        assert dispute.resolved is True
        assert dispute.resolution == DisputeFlag.Resolution.DISMISSED
        assert dispute.resolved_by == platform_admin
        assert emitted.call_args.args[0] == "dispute.resolved"
        assert RequestTransition.objects.get(action="resolve_dispute").notes == "Talked to both"

        service_request = service.complete(in_progress_request.id, helper)
        assert service_request.workflow_state == RequestState.COMPLETED_BY_HELPER

    def test_held_funds_go_through_escrow(self, in_progress_request, requester, platform_admin):
        create_held_payment(in_progress_request)
        service.raise_dispute(in_progress_request.id, requester, reason="Helper left early")

        with pytest.raises(InvalidTransitionError) as exc_info:
            service.resolve_dispute(in_progress_request.id, platform_admin)

        assert exc_info.value.error_code == "FUNDS_HELD"
        assert _reload(in_progress_request).has_open_dispute

    def test_requires_open_dispute(self, in_progress_request, platform_admin):
        with pytest.raises(InvalidTransitionError) as exc_info:
            service.resolve_dispute(in_progress_request.id, platform_admin)

        assert exc_info.value.error_code == "NO_OPEN_DISPUTE"

    def test_parties_cannot_dismiss(self, in_progress_request, helper):
        DisputeFlagFactory(request=in_progress_request)

        with pytest.raises(ForbiddenActionError):
            service.resolve_dispute(in_progress_request.id, helper)

    def test_offered_to_admin_only_without_held_funds(self, in_progress_request, platform_admin):
        DisputeFlagFactory(request=in_progress_request)

        assert service.available_actions(in_progress_request, platform_admin) == ["resolve_dispute"]

        create_held_payment(in_progress_request)

        assert "resolve_dispute" not in service.available_actions(in_progress_request, platform_admin)


# =============================================================================
# Queries
# =============================================================================


@pytest.mark.django_db
class TestQueries:
    def test_history_oldest_first(self, open_request, requester, helper):
        service.accept(open_request.id, helper)
        service.start(open_request.id, helper)

        actions = [t.action for t in service.history(open_request.id, requester)]

        assert actions == ["accept", "start"]

    def test_stranger_cannot_see_request(self, in_progress_request, other_helper):
        with pytest.raises(NotFoundError):
            service.get_for_actor(in_progress_request.id, other_helper)

    def test_open_requests_visible_to_helpers(self, open_request, helper):
        assert service.get_for_actor(open_request.id, helper) == open_request

    def test_stats_for_requester(self, requester, open_request, confirmed_request):
        ServiceRequestFactory(requester=requester, cancelled=True)

        stats = service.stats(requester)

        assert stats == {
            "total": 3,
            "active": 1,
            "completed": 1,
            "cancelled": 1,
            "declined": 0,
            "disputed": 0,
        }

    def test_stats_for_helper_counts_open(self, helper, open_request, in_progress_request):
        stats = service.stats(helper)

        assert stats["total"] == 1
        assert stats["open"] == 1

    def test_available_actions_add_pay_and_settlement(
        self, completed_request, requester, platform_admin
    ):
        assert "pay" in service.available_actions(completed_request, requester)

        create_held_payment(completed_request)

        assert "pay" not in service.available_actions(completed_request, requester)
        assert service.available_actions(completed_request, platform_admin) == ["refund"]
