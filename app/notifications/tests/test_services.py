"""
Tests for NotificationService and the domain event receiver.

Covers:
- Recipient resolution per event (actor excluded, admins included)
- Idempotency per event occurrence
- Email delivery rows and task queuing after commit
- Operator alerts for divergence and disputes
- Read state management
- Receiver wiring: emit() -> notifications after commit, failures isolated
"""

import uuid

import pytest

from authentication.tests.factories import HelperFactory
from core.events import emit
from core.exceptions import NotFoundError
from notifications.models import DeliveryStatus, Notification, NotificationDelivery
from notifications.services import NotificationService
from notifications.tests.factories import NotificationFactory


# =============================================================================
# notify_event
# =============================================================================


@pytest.mark.django_db
class TestNotifyEvent:
    """NotificationService.notify_event fans events out to recipients."""

    def test_accepted_notifies_requester_only(
        self, requester, helper, request_payload, mock_email_delay, django_capture_on_commit_callbacks
    ):
        """
        The helper accepted, so only the requester hears about it.

        Why it matters: The actor never gets a notification for their own action.
        """
        payload = request_payload()

        with django_capture_on_commit_callbacks(execute=True):
            created = NotificationService.notify_event("request.accepted", payload)

        assert [n.recipient for n in created] == [requester]
        notification = created[0]
        assert notification.event == "request.accepted"
        assert notification.title == "Your request was accepted"
        assert notification.data == {"request_id": payload["request_id"]}
        delivery = NotificationDelivery.objects.get(notification=notification)
        assert delivery.status == DeliveryStatus.PENDING
        mock_email_delay.assert_called_once_with(delivery.pk)

    def test_created_notifies_preferred_helper(self, requester, helper, request_payload, mock_email_delay):
        payload = request_payload(actor_id=requester.pk, helper_id=None, preferred_helper_id=helper.pk)

        created = NotificationService.notify_event("request.created", payload)

        assert [n.recipient for n in created] == [helper]

    def test_created_without_preferred_helper_notifies_nobody(self, requester, request_payload):
        payload = request_payload(actor_id=requester.pk, helper_id=None, preferred_helper_id=None)

        assert NotificationService.notify_event("request.created", payload) == []

    def test_confirmed_includes_admins(self, requester, helper, platform_admin, request_payload, mock_email_delay):
        payload = request_payload(actor_id=requester.pk, workflow_state="confirmed_by_requester")

        created = NotificationService.notify_event("request.confirmed", payload)

        assert {n.recipient for n in created} == {helper, platform_admin}

    def test_reassigned_notifies_both_helpers_and_requester(
        self, requester, helper, platform_admin, request_payload, mock_email_delay
    ):
        previous = HelperFactory()
        payload = request_payload(actor_id=platform_admin.pk, previous_helper_id=previous.pk)

        created = NotificationService.notify_event("request.reassigned", payload)

        assert {n.recipient for n in created} == {requester, helper, previous}

    def test_inactive_recipient_is_skipped(self, requester, request_payload, mock_email_delay):
        requester.is_active = False
        requester.save(update_fields=["is_active"])

        assert NotificationService.notify_event("request.accepted", request_payload()) == []

    def test_payment_released_renders_helper_share(self, helper, request_payload, mock_email_delay):
        payload = request_payload(
            actor_id=None,
            payment_id=str(uuid.uuid4()),
            helper_share=4500,
            platform_fee=500,
        )

        (notification,) = NotificationService.notify_event("payment.released", payload)

        assert notification.recipient == helper
        assert "4500" in notification.body
        assert notification.data["payment_id"] == payload["payment_id"]

    def test_redelivered_event_does_not_duplicate(self, request_payload, mock_email_delay):
        payload = request_payload()

        NotificationService.notify_event("request.accepted", payload)
        second = NotificationService.notify_event("request.accepted", payload)

        assert second == []
        assert Notification.objects.filter(event="request.accepted").count() == 1

    def test_unknown_event_is_ignored(self, request_payload):
        assert NotificationService.notify_event("request.viewed", request_payload()) == []

    def test_missing_template_key_raises(self, request_payload):
        """dispute.raised renders raised_by_role; a payload without it is a bug upstream."""
        with pytest.raises(KeyError):
            NotificationService.notify_event("dispute.raised", request_payload())


@pytest.mark.django_db
class TestOperatorAlerts:
    """Divergence and disputes also mail ADMIN_NOTIFICATION_EMAIL."""

    def test_divergence_alerts_operator_mailbox(
        self, settings, platform_admin, mock_email_delay, mock_alert_delay, django_capture_on_commit_callbacks
    ):
        settings.ADMIN_NOTIFICATION_EMAIL = "ops@example.com"
        payload = {
            "event_id": str(uuid.uuid4()),
            "run_id": str(uuid.uuid4()),
            "discrepancies_found": 2,
            "by_type": {"ledger_mismatch": 2},
        }

        with django_capture_on_commit_callbacks(execute=True):
            created = NotificationService.notify_event("reconciliation.divergence", payload)

        assert [n.recipient for n in created] == [platform_admin]
        mock_alert_delay.assert_called_once()
        subject, body = mock_alert_delay.call_args.args
        assert subject == "Reconciliation divergence"
        assert "2 discrepancies" in body

    def test_no_alert_without_operator_mailbox(
        self, settings, platform_admin, mock_email_delay, mock_alert_delay, django_capture_on_commit_callbacks
    ):
        settings.ADMIN_NOTIFICATION_EMAIL = ""
        payload = {"event_id": "e1", "run_id": "r1", "discrepancies_found": 1, "by_type": {}}

        with django_capture_on_commit_callbacks(execute=True):
            NotificationService.notify_event("reconciliation.divergence", payload)

        mock_alert_delay.assert_not_called()


# =============================================================================
# Read state
# =============================================================================


@pytest.mark.django_db
class TestReadState:
    def test_mark_as_read_sets_read_at(self, requester, unread_notification):
        notification = NotificationService.mark_as_read(unread_notification.pk, requester)

        assert notification.is_read is True
        assert notification.read_at is not None

    def test_mark_as_read_is_idempotent(self, requester, read_notification):
        notification = NotificationService.mark_as_read(read_notification.pk, requester)

        assert notification.is_read is True

    def test_mark_as_read_other_users_notification_is_not_found(self, helper, unread_notification):
        with pytest.raises(NotFoundError):
            NotificationService.mark_as_read(unread_notification.pk, helper)

    def test_mark_all_as_read_counts_only_unread(self, requester, helper):
        NotificationFactory.create_batch(3, recipient=requester)
        NotificationFactory(recipient=requester, is_read=True)
        NotificationFactory(recipient=helper)

        assert NotificationService.mark_all_as_read(requester) == 3
        assert NotificationService.unread_count(requester) == 0
        assert NotificationService.unread_count(helper) == 1


# =============================================================================
# Receiver wiring
# =============================================================================


@pytest.mark.django_db
class TestDomainEventReceiver:
    """emit() reaches NotificationService only after the transaction commits."""

    def test_emit_creates_notification_after_commit(
        self, requester, helper, mock_email_delay, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            emit(
                "request.completed",
                request_id=str(uuid.uuid4()),
                requester_id=requester.pk,
                helper_id=helper.pk,
                actor_id=helper.pk,
                workflow_state="completed_by_helper",
            )
            assert not Notification.objects.exists()

        for callback in callbacks:
            callback()

        assert Notification.objects.filter(recipient=requester, event="request.completed").exists()

    def test_receiver_failure_is_logged_not_raised(
        self, requester, helper, mocker, django_capture_on_commit_callbacks
    ):
        mocker.patch.object(NotificationService, "notify_event", side_effect=RuntimeError("boom"))
        log_error = mocker.patch("core.events.logger.error")

        with django_capture_on_commit_callbacks(execute=True):
            emit("request.accepted", request_id="r1", requester_id=requester.pk, helper_id=helper.pk)

        log_error.assert_called_once()
        assert log_error.call_args.kwargs["extra"]["event"] == "request.accepted"
