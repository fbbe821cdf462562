"""Tests for domain event emission."""

from __future__ import annotations

import pytest

from core.events import domain_event, emit


@pytest.fixture
def received():
    events = []

    def receiver(sender, event, payload, **kwargs):
        events.append((event, payload))

    domain_event.connect(receiver, weak=False, dispatch_uid="test-events-receiver")
    yield events
    domain_event.disconnect(dispatch_uid="test-events-receiver")


@pytest.mark.django_db
class TestEmit:
    def test_delivered_after_commit(self, received, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            emit("request.accepted", request_id="r1")

        assert received == []
        assert len(callbacks) == 1

        callbacks[0]()

        event, payload = received[0]
        assert event == "request.accepted"
        assert payload["request_id"] == "r1"

    def test_each_emission_gets_its_own_event_id(self, received, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            emit("payment.held", payment_id="p1")
            emit("payment.held", payment_id="p1")

        first, second = (payload["event_id"] for _, payload in received)
        assert first != second

    def test_caller_supplied_event_id_is_kept(self, received, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            emit("payment.held", payment_id="p1", event_id="fixed")

        assert received[0][1]["event_id"] == "fixed"

    def test_failing_receiver_is_logged_not_raised(
        self, received, django_capture_on_commit_callbacks, caplog
    ):
        def broken(sender, **kwargs):
            raise RuntimeError("mail server down")

        domain_event.connect(broken, weak=False, dispatch_uid="test-events-broken")
        try:
            with django_capture_on_commit_callbacks(execute=True):
                emit("dispute.raised", request_id="r1")
        finally:
            domain_event.disconnect(dispatch_uid="test-events-broken")

        assert received[0][0] == "dispute.raised"
        assert "Domain event receiver failed" in caplog.text
