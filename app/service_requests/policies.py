"""
Guards evaluated before any lifecycle action.

Order (first failure wins):
    1. Role may invoke the action at all          -> ForbiddenActionError
    2. Actor is a party to this request           -> PermissionDeniedError
    3. Cancellation window (cancel only)          -> CancelWindowExpiredError
    4. No unresolved dispute                      -> DisputeFrozenError
    5. Transition table / state sets              -> ConflictError (accept)
                                                     InvalidTransitionError (others)

The cancellation window sits ahead of the transition table so its length
stays one setting (CANCEL_WINDOW_HOURS) rather than a table property.

Usage:
    from service_requests import policies

    to_state = policies.check(service_request, Action.ACCEPT, helper)
    policies.available_actions(service_request, user)  # ["accept", "decline", ...]
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.utils import timezone

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    InvalidTransitionError,
    PermissionDeniedError,
)

from service_requests.exceptions import (
    CancelWindowExpiredError,
    DisputeFrozenError,
    ForbiddenActionError,
)
from service_requests.states import (
    DISPUTABLE_STATES,
    RATEABLE_STATES,
    VIEWABLE_STATES,
    Action,
    Role,
    actions_for_role,
    next_state,
)

if TYPE_CHECKING:
    from datetime import datetime

    from authentication.models import User
    from service_requests.models import ServiceRequest

# Actions that are not transitions but still obey the guards
NON_TRANSITION_ACTIONS = frozenset(
    {Action.DISPUTE, Action.VIEW, Action.RATE, Action.RESOLVE_DISPUTE}
)

# Actions an unresolved dispute does not block
UNFROZEN_ACTIONS = frozenset({Action.VIEW, Action.DISPUTE, Action.RESOLVE_DISPUTE})

LIFECYCLE_ACTIONS = (
    Action.ACCEPT,
    Action.DECLINE,
    Action.VIEW,
    Action.START,
    Action.COMPLETE,
    Action.CONFIRM,
    Action.CANCEL,
    Action.RELIST,
    Action.DISPUTE,
    Action.RATE,
    Action.REASSIGN,
)


def require_role(actor: User, action: str) -> None:
    if action not in actions_for_role(actor.role):
        raise ForbiddenActionError(
            f"A {actor.role} may not {action} a request",
            details={"action": action, "role": actor.role},
        )


def require_party(service_request: ServiceRequest, actor: User, action: str) -> None:
    """The actor must be the right person on this request, not just the right role."""
    if actor.role == Role.ADMIN:
        return

    if actor.role == Role.REQUESTER:
        if service_request.requester_id != actor.pk:
            raise PermissionDeniedError(
                "Only the requester who created this request may do that",
                error_code="NOT_REQUEST_OWNER",
            )
        return

    # Helpers
    if action in (Action.ACCEPT, Action.DECLINE, Action.VIEW):
        if service_request.helper_id is not None and service_request.helper_id != actor.pk:
            # Lost the race; reported as Conflict by the table check
            return
        if (
            service_request.preferred_helper_id is not None
            and service_request.preferred_helper_id != actor.pk
        ):
            raise PermissionDeniedError(
                "This request is addressed to another helper",
                error_code="NOT_PREFERRED_HELPER",
            )
        if (
            action == Action.ACCEPT
            and service_request.declined_by.filter(pk=actor.pk).exists()
        ):
            raise PermissionDeniedError(
                "You declined this request and cannot accept it",
                error_code="PREVIOUSLY_DECLINED",
            )
        return

    if service_request.helper_id != actor.pk:
        raise PermissionDeniedError(
            "Only the assigned helper may do that",
            error_code="NOT_ASSIGNED_HELPER",
        )


def require_cancel_window(service_request: ServiceRequest, now: datetime | None = None) -> None:
    now = now or timezone.now()
    if not service_request.cancel_window_open(now):
        raise CancelWindowExpiredError(
            "The cancellation window for this request has closed",
            details={"cancel_deadline": service_request.cancel_deadline.isoformat()},
        )


def require_not_frozen(service_request: ServiceRequest, action: str) -> None:
    if action in UNFROZEN_ACTIONS:
        return
    if service_request.has_open_dispute:
        raise DisputeFrozenError(
            "This request is under dispute; an admin must resolve it first",
            details={"action": action},
        )


def resolve_next_state(service_request: ServiceRequest, action: str, role: str) -> str:
    current = service_request.workflow_state
    target = next_state(current, action, role)
    if target is not None:
        return target

    details = {"current_state": current, "action": action}
    if action == Action.ACCEPT:
        raise ConflictError(
            "This request is no longer open for acceptance",
            error_code="REQUEST_NOT_OPEN",
            details=details,
        )
    raise InvalidTransitionError(
        f"Cannot {action} a request that is '{current}'",
        details=details,
    )


def require_state_for(service_request: ServiceRequest, action: str) -> None:
    """State gate for actions that do not change workflow_state."""
    current = service_request.workflow_state
    details = {"current_state": current, "action": action}

    if action == Action.DISPUTE:
        if current not in DISPUTABLE_STATES or service_request.is_archived:
            raise InvalidTransitionError(
                f"Cannot raise a dispute on a request that is '{current}'",
                details=details,
            )
        if service_request.has_open_dispute:
            raise ConflictError(
                "A dispute is already open on this request",
                error_code="DISPUTE_ALREADY_OPEN",
                details=details,
            )
    elif action == Action.VIEW:
        if current not in VIEWABLE_STATES:
            raise InvalidTransitionError(
                f"Cannot mark a '{current}' request as viewed",
                details=details,
            )
    elif action == Action.RATE:
        if current not in RATEABLE_STATES:
            raise InvalidTransitionError(
                "Requests can only be rated after confirmation",
                details=details,
            )
        if service_request.rating is not None:
            raise ConflictError(
                "This request has already been rated",
                error_code="ALREADY_RATED",
                details=details,
            )
    elif action == Action.RESOLVE_DISPUTE:
        if not service_request.has_open_dispute:
            raise InvalidTransitionError(
                "There is no open dispute on this request",
                error_code="NO_OPEN_DISPUTE",
                details=details,
            )


def check(
    service_request: ServiceRequest,
    action: str,
    actor: User,
    now: datetime | None = None,
) -> str | None:
    """
    Run every guard for ``action`` by ``actor``.

    Returns:
        The next workflow state, or None for actions that keep the state.
    """
    require_role(actor, action)
    require_party(service_request, actor, action)
    if action == Action.CANCEL:
        require_cancel_window(service_request, now)
    require_not_frozen(service_request, action)

    if action in NON_TRANSITION_ACTIONS:
        require_state_for(service_request, action)
        return None
    return resolve_next_state(service_request, action, actor.role)


def available_actions(
    service_request: ServiceRequest,
    actor: User,
    now: datetime | None = None,
) -> list[str]:
    """Lifecycle actions ``actor`` could invoke on ``service_request`` right now."""
    allowed = []
    for action in LIFECYCLE_ACTIONS:
        if action not in actions_for_role(actor.role):
            continue
        try:
            check(service_request, action, actor, now)
        except BaseApplicationError:
            continue
        allowed.append(str(action))
    return allowed

