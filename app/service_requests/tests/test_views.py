"""
API tests for the service request endpoints.

Every failure is checked through the error envelope: the kind tells the
client what went wrong, the code tells it which rule.
"""

from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone

from payments.tests.factories import create_held_payment
from service_requests.tests.factories import ServiceRequestFactory


def _url(name, service_request=None):
    if service_request is None:
        return reverse(f"service_requests:request-{name}")
    return reverse(f"service_requests:request-{name}", args=[service_request.id])


@pytest.mark.django_db
class TestCreateAndList:
    def test_requires_authentication(self, api_client):
        response = api_client.get(_url("list"))

        assert response.status_code == 401
        assert response.data["error"]["kind"] == "Unauthenticated"

    def test_requester_creates(self, client_for, requester):
        response = client_for(requester).post(
            _url("list"),
            {
                "service_category": "elder_care",
                "service_location": "Jayanagar, Bengaluru",
                "scheduled_date": str(timezone.localdate() + timedelta(days=1)),
                "urgency_level": "high",
            },
            format="json",
        )

        assert response.status_code == 201
        assert response.data["workflow_state"] == "requested"
        assert response.data["requester"]["id"] == requester.pk
        assert response.data["available_actions"] == ["cancel", "dispute", "pay"]
        assert response.data["version"] == 1

    def test_missing_fields(self, client_for, requester):
        response = client_for(requester).post(_url("list"), {"service_category": "x"}, format="json")

        assert response.status_code == 400
        assert response.data["error"]["kind"] == "ValidationError"
        assert "service_location" in response.data["error"]["details"]

    def test_helper_cannot_create(self, client_for, helper):
        response = client_for(helper).post(
            _url("list"),
            {
                "service_category": "elder_care",
                "service_location": "Jayanagar",
                "scheduled_date": str(timezone.localdate()),
            },
            format="json",
        )

        assert response.status_code == 403
        assert response.data["error"]["kind"] == "Forbidden"

    def test_list_is_scoped(self, client_for, requester, helper, open_request):
        other_open = ServiceRequestFactory()
        ServiceRequestFactory(in_progress=True)

        mine = client_for(requester).get(_url("list")).data
        visible_to_helper = client_for(helper).get(_url("list")).data

        assert [r["id"] for r in mine["results"]] == [str(open_request.id)]
        assert {r["id"] for r in visible_to_helper["results"]} == {str(open_request.id), str(other_open.id)}

    def test_state_filter(self, client_for, platform_admin, open_request, in_progress_request):
        response = client_for(platform_admin).get(_url("list"), {"state": "in_progress"})

        assert [r["id"] for r in response.data["results"]] == [str(in_progress_request.id)]

    def test_archived_filter(self, client_for, requester, open_request):
        archived = ServiceRequestFactory(requester=requester, cancelled=True, archived_at=timezone.now())

        response = client_for(requester).get(_url("list"), {"archived": "true"})

        assert [r["id"] for r in response.data["results"]] == [str(archived.id)]

    def test_unknown_state_is_rejected(self, client_for, platform_admin):
        response = client_for(platform_admin).get(_url("list"), {"state": "paid"})

        assert response.status_code == 400
        assert response.data["error"]["kind"] == "ValidationError"

    def test_stranger_gets_not_found(self, client_for, other_helper, in_progress_request):
        response = client_for(other_helper).get(_url("detail", in_progress_request))

        assert response.status_code == 404


@pytest.mark.django_db
class TestLifecycleActions:
    def test_full_journey(self, client_for, requester, helper, open_request):
        as_helper = client_for(helper)
        as_requester = client_for(requester)

        assert as_helper.post(_url("viewed", open_request)).data["viewed_by_helper"] is True
        accepted = as_helper.post(_url("accept", open_request), {"expected_version": 2}, format="json")
        assert accepted.status_code == 200
        assert accepted.data["helper"]["id"] == helper.pk
        assert accepted.data["available_actions"] == ["start", "dispute"]

        as_helper.post(_url("start", open_request))
        completed = as_helper.post(_url("complete", open_request), {"notes": "All done"}, format="json")
        assert completed.data["workflow_state"] == "completed_by_helper"

        confirmed = as_requester.post(_url("confirm", open_request))
        assert confirmed.data["workflow_state"] == "confirmed_by_requester"
        assert confirmed.data["archived_at"] is not None

        rated = as_requester.post(_url("rate", open_request), {"rating": 5}, format="json")
        assert rated.data["rating"] == 5

        history = as_requester.get(_url("history", open_request)).data
        assert [h["action"] for h in history] == ["accept", "start", "complete", "confirm"]

    def test_stale_version(self, client_for, helper, open_request):
        response = client_for(helper).post(
            _url("accept", open_request), {"expected_version": 7}, format="json"
        )

        assert response.status_code == 409
        assert response.data["error"]["code"] == "STALE_RECORD"
        assert response.data["error"]["details"]["current_version"] == 1

    def test_race_loser_gets_conflict(self, client_for, helper, other_helper, open_request):
        client_for(helper).post(_url("accept", open_request))

        response = client_for(other_helper).post(_url("accept", open_request))

        assert response.status_code == 409
        assert response.data["error"]["code"] == "REQUEST_NOT_OPEN"

    def test_wrong_state(self, client_for, helper, accepted_request):
        response = client_for(helper).post(_url("complete", accepted_request))

        assert response.status_code == 409
        assert response.data["error"]["kind"] == "InvalidTransition"

    def test_wrong_role(self, client_for, requester, open_request):
        response = client_for(requester).post(_url("accept", open_request))

        assert response.status_code == 403
        assert response.data["error"]["code"] == "ACTION_NOT_ALLOWED_FOR_ROLE"

    def test_cancel_window_expired(self, client_for, requester):
        service_request = ServiceRequestFactory(requester=requester, window_closed=True)

        response = client_for(requester).post(_url("cancel", service_request))

        assert response.status_code == 422
        assert response.data["error"]["kind"] == "WindowExpired"

    def test_cancel_with_held_funds(self, client_for, requester, accepted_request):
        create_held_payment(accepted_request)

        response = client_for(requester).post(_url("cancel", accepted_request))

        assert response.status_code == 200
        assert response.data["workflow_state"] == "cancelled"
        assert response.data["archived_at"] is not None

    def test_rate_validation(self, client_for, requester, confirmed_request):
        response = client_for(requester).post(_url("rate", confirmed_request), {"rating": 9}, format="json")

        assert response.status_code == 400
        assert "rating" in response.data["error"]["details"]


@pytest.mark.django_db
class TestDisputeAndReassign:
    def test_dispute_freezes_request(self, client_for, requester, helper, in_progress_request):
        response = client_for(requester).post(
            _url("dispute", in_progress_request), {"reason": "Helper left early"}, format="json"
        )

        assert response.status_code == 201
        assert response.data["raised_by_role"] == "requester"
        assert response.data["state_at_raise"] == "in_progress"

        detail = client_for(helper).get(_url("detail", in_progress_request)).data
        assert detail["open_dispute"]["reason"] == "Helper left early"
        assert detail["available_actions"] == []

        frozen = client_for(helper).post(_url("complete", in_progress_request))
        assert frozen.status_code == 403
        assert frozen.data["error"]["code"] == "DISPUTE_FROZEN"

    def test_dispute_requires_reason(self, client_for, helper, in_progress_request):
        response = client_for(helper).post(_url("dispute", in_progress_request), {}, format="json")

        assert response.status_code == 400

    def test_admin_reassigns(self, client_for, platform_admin, other_helper, accepted_request):
        response = client_for(platform_admin).post(
            _url("reassign", accepted_request),
            {"helper_id": other_helper.pk, "notes": "Swap"},
            format="json",
        )

        assert response.status_code == 200
        assert response.data["helper"]["id"] == other_helper.pk

    def test_admin_dismisses_unfunded_dispute(self, client_for, platform_admin, helper, in_progress_request):
        client_for(helper).post(_url("dispute", in_progress_request), {"reason": "Never paid"}, format="json")

        response = client_for(platform_admin).post(_url("resolve-dispute", in_progress_request))

        assert response.status_code == 200
        assert response.data["resolution"] == "dismissed"
        completed = client_for(helper).post(_url("complete", in_progress_request))
        assert completed.data["workflow_state"] == "completed_by_helper"

    def test_reassign_to_non_helper(self, client_for, platform_admin, requester, accepted_request):
        response = client_for(platform_admin).post(
            _url("reassign", accepted_request), {"helper_id": requester.pk}, format="json"
        )

        assert response.status_code == 400


@pytest.mark.django_db
class TestStats:
    def test_stats(self, client_for, requester, open_request, confirmed_request):
        response = client_for(requester).get(_url("stats"))

        assert response.status_code == 200
        assert response.data["total"] == 2
        assert response.data["completed"] == 1
