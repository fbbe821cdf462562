"""
Service request models.

- ServiceRequest: A requester's ask for help, driven through its workflow
- DisputeFlag: Orthogonal freeze raised by either party
- RequestTransition: Status history, one row per lifecycle change

Workflow state is an FSMField (protected). Services persist transitions
with a conditional UPDATE on (workflow_state, version), so two actors
racing on the same row cannot both win.

Usage:
    from service_requests.models import ServiceRequest

    service_request = ServiceRequest.objects.create(
        requester=user,
        service_category="elder_care",
        service_location="Koramangala, Bengaluru",
        scheduled_date=date(2026, 11, 2),
        contact="+91 98450 00000",
    )
    service_request.cancel_deadline  # created + CANCEL_WINDOW_HOURS
"""

from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from service_requests.states import RequestState, UrgencyLevel


def default_cancel_deadline():
    return timezone.now() + timedelta(hours=settings.CANCEL_WINDOW_HOURS)


class ServiceRequestQuerySet(models.QuerySet):
    def visible_to(self, user):
        """Requests the user may see: own, assigned, or open to helpers."""
        if user.is_admin_role:
            return self
        if user.is_helper:
            open_to_helper = (
                Q(workflow_state=RequestState.REQUESTED, archived_at__isnull=True)
                & (Q(preferred_helper__isnull=True) | Q(preferred_helper=user))
                & ~Q(pk__in=user.declined_requests.values("pk"))
            )
            return self.filter(Q(helper=user) | open_to_helper)
        return self.filter(requester=user)

    def active(self):
        return self.filter(archived_at__isnull=True)


class ServiceRequest(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A request for service.

    Fields:
        requester: User who asked for help
        helper: Assigned helper (set on accept, kept afterwards)
        preferred_helper: Optional targeted helper; only they may accept
        declined_by: Helpers that declined; they may not accept after relist
        workflow_state: Position in the workflow (FSM, protected)
        cancel_deadline: Requester may cancel until this moment
        viewed_by_helper: Informational, never a workflow gate
        archived_at: Set once money settles (release/refund); never hard-deleted
        rating/feedback: Requester's review after confirmation
        version: Optimistic locking version
    """

    # ==========================================================================
    # Parties
    # ==========================================================================

    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="service_requests",
    )
    helper = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="assigned_requests",
    )
    preferred_helper = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="targeted_requests",
    )
    declined_by = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name="declined_requests",
    )

    # ==========================================================================
    # Details
    # ==========================================================================

    service_category = models.CharField(max_length=100, db_index=True)
    description = models.TextField(blank=True)
    contact = models.CharField(max_length=100, blank=True)
    service_location = models.CharField(max_length=255)
    scheduled_date = models.DateField()
    scheduled_time = models.TimeField(null=True, blank=True)
    urgency_level = models.CharField(
        max_length=10,
        choices=UrgencyLevel.choices,
        default=UrgencyLevel.MEDIUM,
    )

    # ==========================================================================
    # Workflow
    # ==========================================================================

    workflow_state = FSMField(
        default=RequestState.REQUESTED,
        choices=RequestState.choices,
        db_index=True,
        protected=True,
        help_text="Workflow state (managed by FSM)",
    )
    cancel_deadline = models.DateTimeField(default=default_cancel_deadline)
    viewed_by_helper = models.BooleanField(default=False)

    accepted_at = models.DateTimeField(null=True, blank=True)
    declined_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    archived_at = models.DateTimeField(null=True, blank=True, db_index=True)

    # ==========================================================================
    # Review
    # ==========================================================================

    rating = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(5)],
    )
    feedback = models.TextField(blank=True)

    objects = ServiceRequestQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["requester", "workflow_state"], name="sr_requester_state_idx"),
            models.Index(fields=["helper", "workflow_state"], name="sr_helper_state_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(rating__isnull=True) | Q(rating__gte=1, rating__lte=5),
                name="service_request_rating_range",
            ),
        ]

    def __str__(self) -> str:
        return f"ServiceRequest({self.id}, {self.workflow_state})"

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def open_dispute(self) -> DisputeFlag | None:
        return self.disputes.filter(resolved=False).first()

    @property
    def has_open_dispute(self) -> bool:
        return self.disputes.filter(resolved=False).exists()

    def cancel_window_open(self, now=None) -> bool:
        return (now or timezone.now()) <= self.cancel_deadline

    # ==========================================================================
    # State Transitions (django-fsm)
    # Sources mirror service_requests.states.TRANSITIONS.
    # ==========================================================================

    @transition(field=workflow_state, source=RequestState.REQUESTED, target=RequestState.ACCEPTED)
    def accept(self, helper):
        self.helper = helper
        self.accepted_at = timezone.now()

    @transition(field=workflow_state, source=RequestState.REQUESTED, target=RequestState.DECLINED)
    def decline(self):
        self.declined_at = timezone.now()

    @transition(field=workflow_state, source=RequestState.ACCEPTED, target=RequestState.IN_PROGRESS)
    def start(self):
        self.started_at = timezone.now()

    @transition(
        field=workflow_state,
        source=RequestState.IN_PROGRESS,
        target=RequestState.COMPLETED_BY_HELPER,
    )
    def complete(self):
        self.completed_at = timezone.now()

    @transition(
        field=workflow_state,
        source=RequestState.COMPLETED_BY_HELPER,
        target=RequestState.CONFIRMED_BY_REQUESTER,
    )
    def confirm(self):
        self.confirmed_at = timezone.now()

    @transition(
        field=workflow_state,
        source=[RequestState.REQUESTED, RequestState.ACCEPTED, RequestState.IN_PROGRESS],
        target=RequestState.CANCELLED,
    )
    def cancel(self):
        self.cancelled_at = timezone.now()

    @transition(field=workflow_state, source=RequestState.DECLINED, target=RequestState.REQUESTED)
    def relist(self):
        self.declined_at = None
        self.viewed_by_helper = False
        self.preferred_helper = None


class DisputeFlag(UUIDPrimaryKeyMixin, BaseModel):
    """
    A dispute raised on a request.

    While unresolved it freezes every lifecycle action except admin
    release/refund with resolve_dispute, or dismissal when no funds are
    held. At most one unresolved flag exists per request.
    """

    class Resolution(models.TextChoices):
        RELEASED = "released", "Funds Released"
        REFUNDED = "refunded", "Funds Refunded"
        DISMISSED = "dismissed", "Dismissed"

    request = models.ForeignKey(
        ServiceRequest,
        on_delete=models.CASCADE,
        related_name="disputes",
    )
    raised_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="raised_disputes",
    )
    raised_by_role = models.CharField(max_length=20)
    reason = models.TextField()
    state_at_raise = models.CharField(max_length=32)

    resolved = models.BooleanField(default=False, db_index=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="resolved_disputes",
    )
    resolution = models.CharField(max_length=20, choices=Resolution.choices, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["request"],
                condition=Q(resolved=False),
                name="one_open_dispute_per_request",
            ),
        ]

    def __str__(self) -> str:
        status = "resolved" if self.resolved else "open"
        return f"DisputeFlag({self.request_id}, {status})"

    @property
    def raised_at(self):
        return self.created_at

    def resolve(self, actor, resolution: str) -> None:
        self.resolved = True
        self.resolved_at = timezone.now()
        self.resolved_by = actor
        self.resolution = resolution
        self.save(update_fields=["resolved", "resolved_at", "resolved_by", "resolution", "updated_at"])


class RequestTransition(UUIDPrimaryKeyMixin, BaseModel):
    """One row per lifecycle change. Written in the same transaction."""

    request = models.ForeignKey(
        ServiceRequest,
        on_delete=models.CASCADE,
        related_name="transitions",
    )
    action = models.CharField(max_length=20)
    from_state = models.CharField(max_length=32)
    to_state = models.CharField(max_length=32)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    actor_role = models.CharField(max_length=20)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [models.Index(fields=["request", "created_at"], name="sr_transition_request_idx")]

    def __str__(self) -> str:
        return f"{self.action}: {self.from_state} -> {self.to_state}"
