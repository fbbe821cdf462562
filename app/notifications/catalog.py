"""
Event catalog: who hears about each domain event and what they read.

Each entry names the payload keys whose user ids receive the notification
and whether platform administrators are included. Titles and bodies are
str.format templates rendered against the event payload, so a template
may only reference keys the emitting service puts there.

Usage:
    from notifications.catalog import CATALOG

    entry = CATALOG["payment.released"]
    entry.render(payload)  # -> (title, body)
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class EventMessage:
    title: str
    body: str = ""
    recipients: tuple[str, ...] = ()
    notify_admins: bool = False
    # Also mail ADMIN_NOTIFICATION_EMAIL via send_operator_alert
    alert_operators: bool = False
    exclude_actor: bool = True
    data_keys: tuple[str, ...] = field(
        default=("request_id", "payment_id", "dispute_id", "run_id"),
    )

    def render(self, payload: dict) -> tuple[str, str]:
        """Raises KeyError when a placeholder is missing from the payload."""
        return self.title.format(**payload), self.body.format(**payload)

    def data_for(self, payload: dict) -> dict:
        return {key: payload[key] for key in self.data_keys if payload.get(key) is not None}


CATALOG: dict[str, EventMessage] = {
    "request.created": EventMessage(
        title="New service request",
        body="A requester has asked for you on a new request.",
        recipients=("preferred_helper_id",),
    ),
    "request.accepted": EventMessage(
        title="Your request was accepted",
        body="A helper has accepted your request.",
        recipients=("requester_id",),
    ),
    "request.declined": EventMessage(
        title="Your request was declined",
        body="The helper declined your request. You can relist it for other helpers.",
        recipients=("requester_id",),
    ),
    "request.started": EventMessage(
        title="Work has started",
        body="Your helper has started working on your request.",
        recipients=("requester_id",),
    ),
    "request.completed": EventMessage(
        title="Work marked complete",
        body="Your helper marked the request complete. Please confirm or raise a dispute.",
        recipients=("requester_id",),
    ),
    "request.confirmed": EventMessage(
        title="Completion confirmed",
        body="The requester confirmed the work. Held funds are ready for release.",
        recipients=("helper_id",),
        notify_admins=True,
    ),
    "request.cancelled": EventMessage(
        title="Request cancelled",
        body="A request assigned to you was cancelled.",
        recipients=("helper_id",),
    ),
    "request.relisted": EventMessage(
        title="Request relisted",
        body="Your request is open to all helpers again.",
        recipients=("requester_id",),
        exclude_actor=False,
    ),
    "request.reassigned": EventMessage(
        title="Request reassigned",
        body="An administrator changed the helper assigned to this request.",
        recipients=("requester_id", "helper_id", "previous_helper_id"),
    ),
    "dispute.raised": EventMessage(
        title="Dispute raised",
        body="A dispute was raised by the {raised_by_role}. Funds stay held until an administrator resolves it.",
        recipients=("requester_id", "helper_id"),
        notify_admins=True,
        alert_operators=True,
    ),
    "dispute.resolved": EventMessage(
        title="Dispute resolved",
        body="The dispute was resolved ({resolution}).",
        recipients=("requester_id", "helper_id"),
    ),
    "payment.held": EventMessage(
        title="Payment held in escrow",
        body="{amount} is held in escrow for this request.",
        recipients=("requester_id", "helper_id"),
        exclude_actor=False,
    ),
    "payment.released": EventMessage(
        title="Payment released",
        body="{helper_share} has been released to your balance.",
        recipients=("helper_id",),
    ),
    "payment.refunded": EventMessage(
        title="Payment refunded",
        body="{amount} has been refunded to you.",
        recipients=("requester_id",),
    ),
    "reconciliation.divergence": EventMessage(
        title="Reconciliation divergence",
        body="Reconciliation run {run_id} found {discrepancies_found} discrepancies.",
        notify_admins=True,
        alert_operators=True,
        exclude_actor=False,
    ),
}
