"""
Test configuration and fixtures for notification tests.

Usage:
    def test_example(requester, unread_notification, client_for):
        response = client_for(requester).get("/api/v1/notifications/")
        assert response.status_code == 200
"""

import uuid

import pytest

from notifications.tests.factories import NotificationDeliveryFactory, NotificationFactory


@pytest.fixture
def request_payload(requester, helper):
    """Payload shaped like the lifecycle service's request events."""

    def _payload(**overrides):
        payload = {
            "event_id": str(uuid.uuid4()),
            "request_id": str(uuid.uuid4()),
            "requester_id": requester.pk,
            "helper_id": helper.pk,
            "actor_id": helper.pk,
            "workflow_state": "accepted",
        }
        payload.update(overrides)
        return payload

    return _payload


@pytest.fixture
def unread_notification(requester):
    return NotificationFactory(recipient=requester)


@pytest.fixture
def read_notification(requester):
    return NotificationFactory(recipient=requester, is_read=True)


@pytest.fixture
def pending_delivery(requester):
    return NotificationDeliveryFactory(notification__recipient=requester)


@pytest.fixture
def mock_email_delay(mocker):
    return mocker.patch("notifications.tasks.send_email_notification.delay")


@pytest.fixture
def mock_alert_delay(mocker):
    return mocker.patch("notifications.tasks.send_operator_alert.delay")
