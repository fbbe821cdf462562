"""Tests for the event catalog."""

import pytest

from notifications.catalog import CATALOG

REQUIRED_EVENTS = [
    "request.created",
    "request.accepted",
    "request.declined",
    "request.started",
    "request.completed",
    "request.confirmed",
    "request.cancelled",
    "request.relisted",
    "request.reassigned",
    "dispute.raised",
    "payment.held",
    "payment.released",
    "payment.refunded",
    "reconciliation.divergence",
]


class TestCatalog:
    @pytest.mark.parametrize("event", REQUIRED_EVENTS)
    def test_every_domain_event_has_a_message(self, event):
        entry = CATALOG[event]

        assert entry.title
        assert entry.recipients or entry.notify_admins

    def test_render_formats_payload(self):
        title, body = CATALOG["payment.refunded"].render({"amount": 5000})

        assert title == "Payment refunded"
        assert body == "5000 has been refunded to you."

    def test_data_for_keeps_only_present_ids(self):
        data = CATALOG["payment.held"].data_for(
            {"request_id": "r1", "payment_id": "p1", "dispute_id": None, "amount": 5000}
        )

        assert data == {"request_id": "r1", "payment_id": "p1"}

    def test_admin_only_events_alert_operators(self):
        assert CATALOG["reconciliation.divergence"].alert_operators is True
        assert CATALOG["dispute.raised"].alert_operators is True
