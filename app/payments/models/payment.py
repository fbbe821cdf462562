"""
Payment model: the money side of a service request.

A Payment funds one ServiceRequest through one gateway and tracks the
escrow state of that money. The request's workflow state and the
payment's escrow state are independent; only escrow release/refund and
cancellation touch both.

Usage:
    from payments.models import Payment
    from payments.state_machines import EscrowState, GatewayType

    payment = Payment.objects.create(
        request=service_request,
        payer=service_request.requester,
        amount=49900,
        currency="inr",
        gateway=GatewayType.CARD,
    )

    payment.hold(gateway_transaction_id="pi_123", captured_amount=49900)
    payment.save()  # none -> held, version auto-increments
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import (
    EscrowState,
    GatewayType,
    ProviderRefundStatus,
    TrustLevel,
)


class Payment(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Escrowed payment for a service request.

    Escrow Flow:
        NONE -> HELD -> RELEASED
        NONE -> HELD -> REFUNDED

    Amount and gateway are fixed once the payment is held. A request has
    at most one payment that is not refunded.

    Fields:
        request: The service request this payment funds
        payer: Requester who pays
        amount: Minor units (paise/cents)
        gateway: card, regional_gateway or manual_transfer
        gateway_reference: Provider intent/order id, or the manual reference code
        gateway_transaction_id: Provider payment id, or the user-entered transaction id
        intent_data: Client-facing intent payload (client secret, order id, payee)
        escrow_state: Money state (FSM, protected)
        trust_level: verified for signed captures, low for manual transfers
        captured_amount: Amount the provider reports as captured
        verified_at: When a manual transfer was verified
        events: Timeline of {action, at, by, ...} entries
        version: Optimistic locking version
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    request = models.ForeignKey(
        "service_requests.ServiceRequest",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Service request funded by this payment",
    )

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Requester making the payment",
    )

    # ==========================================================================
    # Amount & Gateway
    # ==========================================================================

    amount = models.PositiveBigIntegerField(
        help_text="Amount in minor units (e.g., 49900 = 499.00)",
    )

    currency = models.CharField(
        max_length=3,
        default="inr",
        help_text="ISO 4217 currency code",
    )

    gateway = models.CharField(
        max_length=32,
        choices=GatewayType.choices,
        help_text="Payment rail used to fund escrow",
    )

    gateway_reference = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Provider intent/order id, or manual transfer reference code",
    )

    gateway_transaction_id = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Provider payment id, or user-supplied transaction id",
    )

    intent_data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Client-facing intent payload returned by createIntent",
    )

    # ==========================================================================
    # Escrow State
    # ==========================================================================

    escrow_state = FSMField(
        default=EscrowState.NONE,
        choices=EscrowState.choices,
        db_index=True,
        protected=True,
        help_text="Escrow state of the money (managed by FSM)",
    )

    trust_level = models.CharField(
        max_length=16,
        choices=TrustLevel.choices,
        default=TrustLevel.VERIFIED,
        help_text="Integrity of the capture proof",
    )

    captured_amount = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Amount reported captured by the provider",
    )

    verified_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a manual transfer reference was verified",
    )

    # ==========================================================================
    # Settlement
    # ==========================================================================

    held_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    released_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Admin who released the funds",
    )

    refunded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Admin who refunded (null for system refunds)",
    )

    admin_override = models.BooleanField(
        default=False,
        help_text="Released or refunded outside the normal precondition",
    )

    settlement_notes = models.TextField(
        blank=True,
        help_text="Admin notes recorded with release/refund",
    )

    provider_refund_status = models.CharField(
        max_length=20,
        choices=ProviderRefundStatus.choices,
        default=ProviderRefundStatus.NOT_REQUIRED,
        help_text="Refund status at the provider after a ledger refund",
    )

    provider_refund_reference = models.CharField(
        max_length=255,
        blank=True,
        help_text="Provider refund id",
    )

    # ==========================================================================
    # Audit
    # ==========================================================================

    failure_reason = models.TextField(
        blank=True,
        help_text="Last capture failure (e.g., amount mismatch)",
    )

    events = models.JSONField(
        default=list,
        blank=True,
        help_text="Timeline of payment actions",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["escrow_state", "held_at"], name="payment_state_held_idx"),
            models.Index(fields=["payer", "escrow_state"], name="payment_payer_state_idx"),
            models.Index(fields=["gateway", "gateway_reference"], name="payment_gateway_ref_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="payment_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["request"],
                condition=~Q(escrow_state=EscrowState.REFUNDED),
                name="one_live_payment_per_request",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.escrow_state}, {self.amount} {self.currency.upper()})"

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.escrow_state in (EscrowState.RELEASED, EscrowState.REFUNDED)

    @property
    def is_low_trust(self) -> bool:
        return self.trust_level == TrustLevel.LOW

    def add_event(self, action: str, actor=None, **extra) -> None:
        """Append to the timeline. Does not save."""
        self.events = [
            *self.events,
            {
                "action": action,
                "at": timezone.now().isoformat(),
                "by": str(actor.pk) if actor is not None else "system",
                **extra,
            },
        ]

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=escrow_state, source=EscrowState.NONE, target=EscrowState.HELD)
    def hold(
        self,
        gateway_transaction_id: str,
        captured_amount: int,
        trust_level: str = TrustLevel.VERIFIED,
    ):
        """
        Funds captured into escrow.

        Transition: NONE -> HELD
        """
        self.gateway_transaction_id = gateway_transaction_id
        self.captured_amount = captured_amount
        self.trust_level = trust_level
        self.held_at = timezone.now()
        self.failure_reason = ""
        if trust_level == TrustLevel.LOW:
            self.verified_at = self.held_at

    @transition(field=escrow_state, source=EscrowState.HELD, target=EscrowState.RELEASED)
    def release(self, actor, admin_override: bool = False, notes: str = ""):
        """
        Funds paid out to the helper (minus platform fee).

        Transition: HELD -> RELEASED (terminal)
        """
        self.released_at = timezone.now()
        self.released_by = actor
        self.admin_override = admin_override
        self.settlement_notes = notes

    @transition(field=escrow_state, source=EscrowState.HELD, target=EscrowState.REFUNDED)
    def refund(self, actor=None, admin_override: bool = False, notes: str = ""):
        """
        Funds returned to the requester.

        Transition: HELD -> REFUNDED (terminal)
        """
        self.refunded_at = timezone.now()
        self.refunded_by = actor
        self.admin_override = admin_override
        self.settlement_notes = notes
        if self.gateway == GatewayType.MANUAL_TRANSFER:
            self.provider_refund_status = ProviderRefundStatus.MANUAL
        else:
            self.provider_refund_status = ProviderRefundStatus.PENDING
