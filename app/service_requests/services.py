"""
Request lifecycle engine.

Every operation takes the acting user explicitly, runs the guards in
service_requests.policies, applies the django-fsm transition and persists
it with a compare-and-set UPDATE:

    UPDATE service_request
       SET workflow_state = <to>, ..., version = version + 1
     WHERE id = <id> AND workflow_state = <from> AND version = <read version>

The row is also locked with SELECT ... FOR UPDATE for the length of the
transaction. When two helpers race to accept, one UPDATE matches and
the other gets ConflictError; the engine never retries on the caller's
behalf.

Each transition writes a RequestTransition row and emits a domain event
after commit. Cancellation with funds held refunds them in the same
transaction.

Usage:
    from service_requests.services import RequestLifecycleService

    service_request = RequestLifecycleService.create(
        requester,
        service_category="elder_care",
        service_location="Indiranagar, Bengaluru",
        scheduled_date=date(2026, 11, 2),
    )
    RequestLifecycleService.accept(service_request.id, helper)
    RequestLifecycleService.cancel(service_request.id, requester, expected_version=2)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError
from django.db.models import F
from django.utils import timezone

from core.events import emit
from core.exceptions import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from core.locks import check_version
from core.services import BaseService

from payments.services import EscrowService
from payments.state_machines import EscrowState
from service_requests import policies
from service_requests.exceptions import ForbiddenActionError
from service_requests.models import DisputeFlag, RequestTransition, ServiceRequest
from service_requests.states import (
    PAYABLE_STATES,
    TERMINAL_STATES,
    Action,
    RequestState,
    Role,
)

if TYPE_CHECKING:
    from authentication.models import User


# Fields each FSM transition touches besides workflow_state
TRANSITION_FIELDS: dict[str, tuple[str, ...]] = {
    Action.ACCEPT: ("helper", "accepted_at"),
    Action.DECLINE: ("declined_at",),
    Action.START: ("started_at",),
    Action.COMPLETE: ("completed_at",),
    Action.CONFIRM: ("confirmed_at",),
    Action.CANCEL: ("cancelled_at",),
    Action.RELIST: ("declined_at", "viewed_by_helper", "preferred_helper"),
}

EVENTS: dict[str, str] = {
    Action.ACCEPT: "request.accepted",
    Action.DECLINE: "request.declined",
    Action.START: "request.started",
    Action.COMPLETE: "request.completed",
    Action.CONFIRM: "request.confirmed",
    Action.CANCEL: "request.cancelled",
    Action.RELIST: "request.relisted",
    Action.REASSIGN: "request.reassigned",
}

REQUIRED_FIELDS = ("service_category", "service_location", "scheduled_date")


class RequestLifecycleService(BaseService):
    """
    Drives a ServiceRequest through its workflow.

    All methods are class methods - no instance state is maintained.
    """

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _load(request_id, expected_version: int | None = None) -> ServiceRequest:
        """Lock the row; with expected_version, fail Conflict if it moved on."""
        if expected_version is not None:
            return check_version(ServiceRequest, request_id, expected_version)
        service_request = ServiceRequest.objects.select_for_update().filter(pk=request_id).first()
        if service_request is None:
            raise NotFoundError(
                f"Request {request_id} not found",
                error_code="REQUEST_NOT_FOUND",
                details={"request_id": str(request_id)},
            )
        return service_request

    @staticmethod
    def _commit(service_request: ServiceRequest, from_state: str, fields: dict[str, Any]) -> None:
        """Compare-and-set on (workflow_state, version)."""
        updated = ServiceRequest.objects.filter(
            pk=service_request.pk,
            workflow_state=from_state,
            version=service_request.version,
        ).update(
            **fields,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if not updated:
            raise ConflictError(
                "This request was changed by someone else. Reload and retry.",
                error_code="CONCURRENT_MODIFICATION",
                details={"request_id": str(service_request.pk), "expected_state": from_state},
            )
        service_request.refresh_from_db(fields=["version", "updated_at"])

    @staticmethod
    def _record(
        service_request: ServiceRequest,
        action: str,
        actor: User | None,
        from_state: str,
        notes: str = "",
    ) -> RequestTransition:
        return RequestTransition.objects.create(
            request=service_request,
            action=action,
            from_state=from_state,
            to_state=service_request.workflow_state,
            actor=actor,
            actor_role=actor.role if actor else "system",
            notes=notes,
        )

    @staticmethod
    def _event_payload(service_request: ServiceRequest, actor: User | None, **extra) -> dict:
        return {
            "request_id": str(service_request.id),
            "requester_id": service_request.requester_id,
            "helper_id": service_request.helper_id,
            "actor_id": actor.pk if actor else None,
            "workflow_state": service_request.workflow_state,
            **extra,
        }

    @staticmethod
    def _archive(service_request: ServiceRequest) -> None:
        now = timezone.now()
        ServiceRequest.objects.filter(pk=service_request.pk).update(archived_at=now)
        service_request.archived_at = now

    @classmethod
    def _transition(
        cls,
        request_id,
        action: str,
        actor: User,
        *args,
        expected_version: int | None = None,
        notes: str = "",
        after: Callable[[ServiceRequest], None] | None = None,
    ) -> ServiceRequest:
        """Guard, apply, persist, record and announce one workflow transition."""
        with cls.atomic():
            service_request = cls._load(request_id, expected_version)
            policies.check(service_request, action, actor)

            from_state = service_request.workflow_state
            getattr(service_request, str(action))(*args)

            fields = {"workflow_state": service_request.workflow_state}
            for name in TRANSITION_FIELDS[action]:
                fields[name] = getattr(service_request, name)
            cls._commit(service_request, from_state, fields)
            cls._record(service_request, action, actor, from_state, notes)

            if after is not None:
                after(service_request)

            emit(
                EVENTS[action],
                **cls._event_payload(service_request, actor, from_state=from_state),
            )

        cls.get_logger().info(
            "Request transition",
            extra={
                "request_id": str(service_request.id),
                "action": action,
                "actor_id": actor.pk,
                "actor_role": actor.role,
                "from_state": from_state,
                "to_state": service_request.workflow_state,
            },
        )
        return service_request

    # =========================================================================
    # Create
    # =========================================================================

    @classmethod
    def create(cls, requester: User, **details) -> ServiceRequest:
        """
        Create a request in 'requested'.

        Raises:
            ForbiddenActionError: Actor is not a requester
            ValidationError: Location, category or schedule missing
        """
        if requester.role != Role.REQUESTER:
            raise ForbiddenActionError(
                f"A {requester.role} may not create a request",
                details={"action": "create", "role": requester.role},
            )
        cls.validate_required(**{name: details.get(name) for name in REQUIRED_FIELDS})

        preferred_helper = details.get("preferred_helper")
        if preferred_helper is not None and preferred_helper.role != Role.HELPER:
            raise ValidationError(
                "Preferred helper must be a helper",
                details={"preferred_helper": ["User is not a helper."]},
            )

        with cls.atomic():
            service_request = ServiceRequest.objects.create(requester=requester, **details)
            cls._record(service_request, "create", requester, from_state="")
            emit(
                "request.created",
                **cls._event_payload(
                    service_request,
                    requester,
                    preferred_helper_id=service_request.preferred_helper_id,
                ),
            )

        cls.get_logger().info(
            "Service request created",
            extra={
                "request_id": str(service_request.id),
                "actor_id": requester.pk,
                "service_category": service_request.service_category,
                "cancel_deadline": service_request.cancel_deadline.isoformat(),
            },
        )
        return service_request

    # =========================================================================
    # Helper actions
    # =========================================================================

    @classmethod
    def accept(cls, request_id, helper: User, expected_version: int | None = None) -> ServiceRequest:
        """
        requested -> accepted. First writer wins.

        Raises:
            ConflictError: Already accepted by another helper, or not open
        """
        return cls._transition(
            request_id, Action.ACCEPT, helper, helper, expected_version=expected_version
        )

    @classmethod
    def decline(
        cls,
        request_id,
        helper: User,
        notes: str = "",
        expected_version: int | None = None,
    ) -> ServiceRequest:
        """requested -> declined. The helper may not accept it after relisting."""
        return cls._transition(
            request_id,
            Action.DECLINE,
            helper,
            expected_version=expected_version,
            notes=notes,
            after=lambda service_request: service_request.declined_by.add(helper),
        )

    @classmethod
    def start(cls, request_id, helper: User, expected_version: int | None = None) -> ServiceRequest:
        return cls._transition(request_id, Action.START, helper, expected_version=expected_version)

    @classmethod
    def complete(
        cls,
        request_id,
        helper: User,
        notes: str = "",
        expected_version: int | None = None,
    ) -> ServiceRequest:
        """in_progress -> completed_by_helper. Unlocks confirm and dispute for the requester."""
        return cls._transition(
            request_id,
            Action.COMPLETE,
            helper,
            expected_version=expected_version,
            notes=notes,
        )

    @classmethod
    def mark_viewed(cls, request_id, helper: User) -> ServiceRequest:
        """Set viewed_by_helper. Informational only, never a workflow gate."""
        with cls.atomic():
            service_request = cls._load(request_id)
            policies.check(service_request, Action.VIEW, helper)
            if not service_request.viewed_by_helper:
                service_request.viewed_by_helper = True
                cls._commit(
                    service_request,
                    service_request.workflow_state,
                    {"viewed_by_helper": True},
                )
        return service_request

    # =========================================================================
    # Requester actions
    # =========================================================================

    @classmethod
    def confirm(
        cls,
        request_id,
        requester: User,
        notes: str = "",
        expected_version: int | None = None,
    ) -> ServiceRequest:
        """
        completed_by_helper -> confirmed_by_requester.

        Makes held funds eligible for admin release. With nothing held the
        request is archived straight away.

        Raises:
            DisputeFrozenError: Unresolved dispute on the request
        """

        def archive_if_unfunded(service_request: ServiceRequest) -> None:
            payment = EscrowService.live_payment(service_request)
            if payment is None or payment.escrow_state != EscrowState.HELD:
                cls._archive(service_request)

        return cls._transition(
            request_id,
            Action.CONFIRM,
            requester,
            expected_version=expected_version,
            notes=notes,
            after=archive_if_unfunded,
        )

    @classmethod
    def cancel(
        cls,
        request_id,
        requester: User,
        notes: str = "",
        expected_version: int | None = None,
    ) -> ServiceRequest:
        """
        requested | accepted | in_progress -> cancelled, within the window.

        Held funds are refunded (system actor) in the same transaction.

        Raises:
            CancelWindowExpiredError: now > cancel_deadline
            DisputeFrozenError: Unresolved dispute on the request
        """

        def refund_or_archive(service_request: ServiceRequest) -> None:
            if EscrowService.refund_on_cancellation(service_request) is None:
                cls._archive(service_request)

        return cls._transition(
            request_id,
            Action.CANCEL,
            requester,
            expected_version=expected_version,
            notes=notes,
            after=refund_or_archive,
        )

    @classmethod
    def relist(cls, request_id, requester: User, expected_version: int | None = None) -> ServiceRequest:
        """
        declined -> requested.

        Reopens the request to every helper except those who declined it;
        a preferred-helper target is dropped.
        """
        return cls._transition(
            request_id, Action.RELIST, requester, expected_version=expected_version
        )

    @classmethod
    def rate(
        cls,
        request_id,
        requester: User,
        rating: int,
        feedback: str = "",
    ) -> ServiceRequest:
        """Review the helper once the request is confirmed."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError(
                "Rating must be between 1 and 5",
                details={"rating": ["Must be an integer between 1 and 5."]},
            )

        with cls.atomic():
            service_request = cls._load(request_id)
            policies.check(service_request, Action.RATE, requester)
            service_request.rating = rating
            service_request.feedback = feedback
            cls._commit(
                service_request,
                service_request.workflow_state,
                {"rating": rating, "feedback": feedback},
            )

        cls.get_logger().info(
            "Request rated",
            extra={"request_id": str(service_request.id), "rating": rating},
        )
        return service_request

    # =========================================================================
    # Either party
    # =========================================================================

    @classmethod
    def raise_dispute(
        cls,
        request_id,
        actor: User,
        reason: str,
        expected_version: int | None = None,
    ) -> DisputeFlag:
        """
        Flag the request as disputed.

        The workflow state is kept; the flag freezes every lifecycle action
        until an admin releases or refunds with resolve_dispute.
        """
        if not (reason or "").strip():
            raise ValidationError(
                "A reason is required to raise a dispute",
                details={"reason": ["This field is required."]},
            )

        with cls.atomic():
            service_request = cls._load(request_id, expected_version)
            policies.check(service_request, Action.DISPUTE, actor)
            state = service_request.workflow_state

            try:
                with cls.atomic():
                    dispute = DisputeFlag.objects.create(
                        request=service_request,
                        raised_by=actor,
                        raised_by_role=actor.role,
                        reason=reason.strip(),
                        state_at_raise=state,
                    )
            except IntegrityError as e:
                raise ConflictError(
                    "A dispute is already open on this request",
                    error_code="DISPUTE_ALREADY_OPEN",
                ) from e

            cls._commit(service_request, state, {})
            cls._record(service_request, Action.DISPUTE, actor, state, notes=reason.strip())
            emit(
                "dispute.raised",
                **cls._event_payload(
                    service_request,
                    actor,
                    dispute_id=str(dispute.id),
                    raised_by_role=actor.role,
                ),
            )

        cls.get_logger().info(
            "Dispute raised",
            extra={
                "request_id": str(service_request.id),
                "dispute_id": str(dispute.id),
                "actor_id": actor.pk,
                "actor_role": actor.role,
                "workflow_state": state,
            },
        )
        return dispute

    # =========================================================================
    # Admin actions
    # =========================================================================

    @classmethod
    def reassign(
        cls,
        request_id,
        admin: User,
        helper: User,
        notes: str = "",
        expected_version: int | None = None,
    ) -> ServiceRequest:
        """Swap the assigned helper on an accepted or in-progress request."""
        if helper.role != Role.HELPER or not helper.is_active:
            raise ValidationError(
                "Requests can only be reassigned to an active helper",
                details={"helper_id": ["User is not an active helper."]},
            )

        with cls.atomic():
            service_request = cls._load(request_id, expected_version)
            policies.check(service_request, Action.REASSIGN, admin)
            if service_request.helper_id == helper.pk:
                raise ValidationError(
                    "This helper is already assigned",
                    details={"helper_id": ["Already assigned to this request."]},
                )

            previous_helper_id = service_request.helper_id
            state = service_request.workflow_state
            service_request.helper = helper
            cls._commit(service_request, state, {"helper": helper})
            cls._record(service_request, Action.REASSIGN, admin, state, notes=notes)
            emit(
                EVENTS[Action.REASSIGN],
                **cls._event_payload(
                    service_request,
                    admin,
                    previous_helper_id=previous_helper_id,
                ),
            )

        cls.get_logger().warning(
            "Request reassigned by admin",
            extra={
                "request_id": str(service_request.id),
                "actor_id": admin.pk,
                "previous_helper_id": previous_helper_id,
                "helper_id": helper.pk,
                "notes": notes,
            },
        )
        return service_request

    @classmethod
    def resolve_dispute(
        cls,
        request_id,
        admin: User,
        notes: str = "",
        expected_version: int | None = None,
    ) -> DisputeFlag:
        """
        Dismiss an open dispute on a request with no funds in escrow.

        Held funds are settled through EscrowService.release/refund with
        resolve_dispute instead, so the flag and the ledger move together.
        """
        with cls.atomic():
            service_request = cls._load(request_id, expected_version)
            policies.check(service_request, Action.RESOLVE_DISPUTE, admin)

            payment = EscrowService.live_payment(service_request, lock=True)
            if payment is not None and payment.escrow_state == EscrowState.HELD:
                raise InvalidTransitionError(
                    "Funds are held for this request; release or refund them to resolve the dispute",
                    error_code="FUNDS_HELD",
                    details={"request_id": str(service_request.id), "payment_id": str(payment.id)},
                )

            dispute = service_request.disputes.select_for_update().get(resolved=False)
            dispute.resolve(admin, DisputeFlag.Resolution.DISMISSED)

            state = service_request.workflow_state
            cls._commit(service_request, state, {})
            cls._record(service_request, Action.RESOLVE_DISPUTE, admin, state, notes=notes)
            emit(
                "dispute.resolved",
                **cls._event_payload(
                    service_request,
                    admin,
                    dispute_id=str(dispute.id),
                    resolution=dispute.resolution,
                ),
            )

        cls.get_logger().warning(
            "Dispute dismissed by admin",
            extra={
                "request_id": str(service_request.id),
                "dispute_id": str(dispute.id),
                "actor_id": admin.pk,
                "notes": notes,
            },
        )
        return dispute

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def get_for_actor(request_id, actor: User) -> ServiceRequest:
        service_request = ServiceRequest.objects.visible_to(actor).filter(pk=request_id).first()
        if service_request is None:
            raise NotFoundError(
                f"Request {request_id} not found",
                error_code="REQUEST_NOT_FOUND",
            )
        return service_request

    @classmethod
    def history(cls, request_id, actor: User):
        """Transitions oldest first."""
        service_request = cls.get_for_actor(request_id, actor)
        return service_request.transitions.select_related("actor").order_by("created_at")

    @staticmethod
    def stats(actor: User) -> dict[str, int]:
        """Request totals for the actor's own requests (all requests for admins)."""
        if actor.role == Role.ADMIN:
            qs = ServiceRequest.objects.all()
        elif actor.role == Role.HELPER:
            qs = ServiceRequest.objects.filter(helper=actor)
        else:
            qs = ServiceRequest.objects.filter(requester=actor)

        stats = {
            "total": qs.count(),
            "active": qs.exclude(workflow_state__in=TERMINAL_STATES)
            .filter(archived_at__isnull=True)
            .count(),
            "completed": qs.filter(workflow_state=RequestState.CONFIRMED_BY_REQUESTER).count(),
            "cancelled": qs.filter(workflow_state=RequestState.CANCELLED).count(),
            "declined": qs.filter(workflow_state=RequestState.DECLINED).count(),
            "disputed": qs.filter(disputes__resolved=False).distinct().count(),
        }
        if actor.role == Role.HELPER:
            stats["open"] = (
                ServiceRequest.objects.visible_to(actor)
                .filter(workflow_state=RequestState.REQUESTED)
                .count()
            )
        return stats

    @staticmethod
    def available_actions(service_request: ServiceRequest, actor: User) -> list[str]:
        """Lifecycle and payment actions the actor may invoke right now."""
        actions = policies.available_actions(service_request, actor)

        if actor.role == Role.REQUESTER and service_request.requester_id == actor.pk:
            payment = EscrowService.live_payment(service_request)
            if (
                service_request.workflow_state in PAYABLE_STATES
                and not service_request.is_archived
                and not service_request.has_open_dispute
                and (payment is None or payment.escrow_state == EscrowState.NONE)
            ):
                actions.append(str(Action.PAY))
        elif actor.role == Role.ADMIN:
            if service_request.has_open_dispute and not EscrowService.has_held_funds(service_request):
                actions.append(str(Action.RESOLVE_DISPUTE))
            if EscrowService.can_release(service_request):
                actions.append(str(Action.RELEASE))
            if EscrowService.can_refund(service_request):
                actions.append(str(Action.REFUND))
        return actions

