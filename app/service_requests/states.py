"""
Workflow states, actions and the static transition table.

Every lifecycle change is looked up in TRANSITIONS by
(current_state, action, role). Role permissions are data in
ROLE_ACTIONS, so there is one place that says who may do what.

State Flow:
    requested -> accepted -> in_progress -> completed_by_helper -> confirmed_by_requester
    requested -> declined -> (relist) -> requested
    requested | accepted | in_progress -> cancelled

A dispute is not a state. It is a DisputeFlag layered on top of
whatever state the request is in, so the state survives resolution.
"""

from __future__ import annotations

from django.db import models

from authentication.models import User

Role = User.Role


class RequestState(models.TextChoices):
    REQUESTED = "requested", "Requested"
    ACCEPTED = "accepted", "Accepted"
    DECLINED = "declined", "Declined"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED_BY_HELPER = "completed_by_helper", "Completed by Helper"
    CONFIRMED_BY_REQUESTER = "confirmed_by_requester", "Confirmed by Requester"
    CANCELLED = "cancelled", "Cancelled"


class UrgencyLevel(models.TextChoices):
    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"


class Action(models.TextChoices):
    # State-changing
    ACCEPT = "accept", "Accept"
    DECLINE = "decline", "Decline"
    START = "start", "Start"
    COMPLETE = "complete", "Mark Completed"
    CONFIRM = "confirm", "Confirm Completion"
    CANCEL = "cancel", "Cancel"
    RELIST = "relist", "Relist"
    REASSIGN = "reassign", "Reassign Helper"
    RESOLVE_DISPUTE = "resolve_dispute", "Resolve Dispute"
    # Same state
    DISPUTE = "dispute", "Raise Dispute"
    VIEW = "viewed", "Mark Viewed"
    RATE = "rate", "Rate"
    # Payment actions
    PAY = "pay", "Pay"
    RELEASE = "release", "Release Funds"
    REFUND = "refund", "Refund"


ROLE_ACTIONS: dict[str, frozenset[str]] = {
    Role.REQUESTER: frozenset(
        {
            Action.CONFIRM,
            Action.CANCEL,
            Action.RELIST,
            Action.DISPUTE,
            Action.RATE,
            Action.PAY,
        }
    ),
    Role.HELPER: frozenset(
        {
            Action.ACCEPT,
            Action.DECLINE,
            Action.START,
            Action.COMPLETE,
            Action.DISPUTE,
            Action.VIEW,
        }
    ),
    Role.ADMIN: frozenset(
        {
            Action.REASSIGN,
            Action.RESOLVE_DISPUTE,
            Action.RELEASE,
            Action.REFUND,
        }
    ),
}

S = RequestState
TRANSITIONS: dict[tuple[str, str, str], str] = {
    (S.REQUESTED, Action.ACCEPT, Role.HELPER): S.ACCEPTED,
    (S.REQUESTED, Action.DECLINE, Role.HELPER): S.DECLINED,
    (S.ACCEPTED, Action.START, Role.HELPER): S.IN_PROGRESS,
    (S.IN_PROGRESS, Action.COMPLETE, Role.HELPER): S.COMPLETED_BY_HELPER,
    (S.COMPLETED_BY_HELPER, Action.CONFIRM, Role.REQUESTER): S.CONFIRMED_BY_REQUESTER,
    (S.REQUESTED, Action.CANCEL, Role.REQUESTER): S.CANCELLED,
    (S.ACCEPTED, Action.CANCEL, Role.REQUESTER): S.CANCELLED,
    (S.IN_PROGRESS, Action.CANCEL, Role.REQUESTER): S.CANCELLED,
    (S.DECLINED, Action.RELIST, Role.REQUESTER): S.REQUESTED,
    (S.ACCEPTED, Action.REASSIGN, Role.ADMIN): S.ACCEPTED,
    (S.IN_PROGRESS, Action.REASSIGN, Role.ADMIN): S.IN_PROGRESS,
}

# Actions that leave workflow_state unchanged; gated by state sets instead
DISPUTABLE_STATES = frozenset(
    {
        RequestState.REQUESTED,
        RequestState.ACCEPTED,
        RequestState.IN_PROGRESS,
        RequestState.COMPLETED_BY_HELPER,
    }
)
VIEWABLE_STATES = frozenset({RequestState.REQUESTED})
RATEABLE_STATES = frozenset({RequestState.CONFIRMED_BY_REQUESTER})
PAYABLE_STATES = frozenset(
    {
        RequestState.REQUESTED,
        RequestState.ACCEPTED,
        RequestState.IN_PROGRESS,
        RequestState.COMPLETED_BY_HELPER,
    }
)
TERMINAL_STATES = frozenset(
    {
        RequestState.CONFIRMED_BY_REQUESTER,
        RequestState.CANCELLED,
        RequestState.DECLINED,
    }
)
# States where helper must be set
ASSIGNED_STATES = frozenset(
    {
        RequestState.ACCEPTED,
        RequestState.IN_PROGRESS,
        RequestState.COMPLETED_BY_HELPER,
        RequestState.CONFIRMED_BY_REQUESTER,
    }
)


def next_state(current: str, action: str, role: str) -> str | None:
    return TRANSITIONS.get((current, action, role))


def actions_for_role(role: str) -> frozenset[str]:
    return ROLE_ACTIONS.get(role, frozenset())
