"""
Escrow ledger: moves a Payment through none -> held -> released | refunded.

Every escrow move writes the Payment transition and its double-entry
ledger entries in one database transaction:

    capture:  external_gateway -> platform_escrow        (amount)       payment_held
    release:  platform_escrow  -> helper_balance[helper] (helper share) payment_released
              platform_escrow  -> platform_revenue       (platform fee) fee_collected
    refund:   platform_escrow  -> external_gateway       (amount)       refund

Release and refund also touch the ServiceRequest (dispute resolution and
archiving) inside the same transaction, so request and payment state
cannot diverge through a crash between two writes.

Money-state guard failures (AmountMismatch, AlreadyCaptured) are logged
at ERROR with full context and always block the operation. Releasing
funds on a cancelled request is a divergence, logged at CRITICAL.

Usage:
    from payments.services import EscrowService

    EscrowService.release(request_id, actor=admin)
    EscrowService.release(request_id, actor=admin, admin_override=True, notes="Support ticket 812")
    EscrowService.refund(request_id, actor=admin, resolve_dispute=True)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from core.events import emit
from core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from core.locks import check_version
from core.services import BaseService

from payments.exceptions import (
    AlreadyCapturedError,
    AmountMismatchError,
    ReconciliationDivergenceError,
)
from payments.ledger.models import AccountType, EntryType
from payments.ledger.services import ledger
from payments.ledger.types import RecordEntryParams
from payments.models import Payment
from payments.services.settlement import split
from payments.state_machines import EscrowState, ProviderRefundStatus, TrustLevel
from service_requests import policies
from service_requests.exceptions import DisputeFrozenError
from service_requests.models import DisputeFlag, RequestTransition, ServiceRequest
from service_requests.states import Action, RequestState

if TYPE_CHECKING:
    from authentication.models import User
    from payments.gateways import CaptureResult

REFERENCE_TYPE = "payment"

# Request states from which a refund needs no override
REFUNDABLE_STATES = frozenset(
    {
        RequestState.CANCELLED,
        RequestState.COMPLETED_BY_HELPER,
        RequestState.DECLINED,
    }
)


class EscrowService(BaseService):
    """
    Escrow transitions for payments.

    All methods are class methods - no instance state is maintained.
    """

    # =========================================================================
    # Lookups
    # =========================================================================

    @staticmethod
    def live_payment(service_request: ServiceRequest, lock: bool = False) -> Payment | None:
        """The request's payment that is not refunded, if any."""
        qs = Payment.objects.filter(request=service_request).exclude(
            escrow_state=EscrowState.REFUNDED
        )
        if lock:
            qs = qs.select_for_update()
        return qs.first()

    @staticmethod
    def _lock_request(request_id) -> ServiceRequest:
        service_request = ServiceRequest.objects.select_for_update().filter(pk=request_id).first()
        if service_request is None:
            raise NotFoundError(
                f"Request {request_id} not found",
                error_code="REQUEST_NOT_FOUND",
                details={"request_id": str(request_id)},
            )
        return service_request

    @classmethod
    def _held_payment(
        cls,
        service_request: ServiceRequest,
        expected_version: int | None = None,
    ) -> Payment:
        payment = cls.live_payment(service_request, lock=True)
        if payment is None or payment.escrow_state == EscrowState.NONE:
            raise InvalidTransitionError(
                "No funds are held for this request",
                error_code="NO_FUNDS_HELD",
                details={"request_id": str(service_request.id)},
            )
        if payment.escrow_state != EscrowState.HELD:
            raise InvalidTransitionError(
                f"Funds for this request are already {payment.escrow_state}",
                error_code="ALREADY_SETTLED",
                details={
                    "request_id": str(service_request.id),
                    "escrow_state": payment.escrow_state,
                },
            )
        if expected_version is not None:
            payment = check_version(Payment, payment.pk, expected_version)
        return payment

    # =========================================================================
    # Capture
    # =========================================================================

    @classmethod
    def capture(
        cls,
        payment_id,
        capture: CaptureResult,
        actor: User | None = None,
    ) -> Payment:
        """
        Move a payment from none to held.

        Idempotent for the same provider transaction: a webhook and a client
        confirmation for the same capture both succeed and hold once.

        Raises:
            AmountMismatchError: Captured amount/currency differs; nothing is held
            AlreadyCapturedError: Payment already left 'none' for another capture
        """
        logger = cls.get_logger()
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            raise NotFoundError(
                f"Payment {payment_id} not found",
                error_code="PAYMENT_NOT_FOUND",
            )

        if (
            capture.captured_amount != payment.amount
            or capture.currency.lower() != payment.currency.lower()
        ):
            reason = (
                f"Captured {capture.captured_amount} {capture.currency.upper()}, "
                f"expected {payment.amount} {payment.currency.upper()}"
            )
            Payment.objects.filter(pk=payment.pk, escrow_state=EscrowState.NONE).update(
                failure_reason=reason,
                updated_at=timezone.now(),
            )
            logger.error(
                "Captured amount does not match payment",
                extra={
                    "payment_id": str(payment.id),
                    "request_id": str(payment.request_id),
                    "gateway": payment.gateway,
                    "expected_amount": payment.amount,
                    "captured_amount": capture.captured_amount,
                    "expected_currency": payment.currency,
                    "captured_currency": capture.currency,
                    "transaction_id": capture.transaction_id,
                },
            )
            raise AmountMismatchError(
                "The captured amount does not match the payment amount",
                details={
                    "expected_amount": payment.amount,
                    "captured_amount": capture.captured_amount,
                },
            )

        with cls.atomic():
            service_request = cls._lock_request(payment.request_id)
            payment = Payment.objects.select_for_update().get(pk=payment.pk)

            if payment.escrow_state != EscrowState.NONE:
                if (
                    payment.escrow_state != EscrowState.REFUNDED
                    and payment.gateway_transaction_id == capture.transaction_id
                ):
                    logger.info(
                        "Capture already recorded",
                        extra={"payment_id": str(payment.id)},
                    )
                    return payment
                logger.error(
                    "Capture attempted on a payment that already left 'none'",
                    extra={
                        "payment_id": str(payment.id),
                        "request_id": str(payment.request_id),
                        "escrow_state": payment.escrow_state,
                        "existing_transaction_id": payment.gateway_transaction_id,
                        "transaction_id": capture.transaction_id,
                    },
                )
                raise AlreadyCapturedError(
                    "Funds for this payment were already captured",
                    details={"escrow_state": payment.escrow_state},
                )

            payment.hold(
                gateway_transaction_id=capture.transaction_id,
                captured_amount=capture.captured_amount,
                trust_level=capture.trust_level,
            )
            payment.add_event("held", actor, trust_level=capture.trust_level)
            payment.save()

            metadata = {
                "gateway": payment.gateway,
                "trust_level": capture.trust_level,
                **capture.metadata,
            }
            if capture.trust_level == TrustLevel.LOW:
                metadata["low_trust"] = True

            ledger.record_entry(
                RecordEntryParams(
                    debit_account_id=ledger.platform_account(
                        AccountType.EXTERNAL_GATEWAY, payment.currency
                    ).id,
                    credit_account_id=ledger.platform_account(
                        AccountType.PLATFORM_ESCROW, payment.currency
                    ).id,
                    amount=payment.amount,
                    entry_type=EntryType.PAYMENT_HELD,
                    idempotency_key=f"hold:{payment.id}",
                    reference_id=payment.id,
                    reference_type=REFERENCE_TYPE,
                    description=f"Escrow hold for request {payment.request_id}",
                    metadata=metadata,
                    created_by=str(actor.pk) if actor else "system",
                )
            )

            emit(
                "payment.held",
                payment_id=str(payment.id),
                request_id=str(payment.request_id),
                requester_id=service_request.requester_id,
                helper_id=service_request.helper_id,
                amount=payment.amount,
                trust_level=capture.trust_level,
            )

            if service_request.workflow_state == RequestState.CANCELLED:
                # Money arrived after cancellation; send it straight back
                logger.warning(
                    "Capture on a cancelled request, refunding",
                    extra={"payment_id": str(payment.id), "request_id": str(service_request.id)},
                )
                cls._refund_locked(
                    service_request,
                    payment,
                    actor=None,
                    notes="Captured after cancellation",
                )

        logger.info(
            "Payment held in escrow",
            extra={
                "payment_id": str(payment.id),
                "request_id": str(payment.request_id),
                "gateway": payment.gateway,
                "amount": payment.amount,
                "trust_level": capture.trust_level,
            },
        )
        return payment

    # =========================================================================
    # Release
    # =========================================================================

    @classmethod
    def release(
        cls,
        request_id,
        actor: User,
        admin_override: bool = False,
        resolve_dispute: bool = False,
        notes: str = "",
        expected_version: int | None = None,
    ) -> Payment:
        """
        Pay held funds out to the helper, minus the platform fee.

        Allowed when the requester confirmed completion, when an admin
        overrides (audited at WARNING), or when resolving an open dispute.

        Raises:
            ForbiddenActionError: Actor is not an admin
            DisputeFrozenError: Open dispute and resolve_dispute not set
            InvalidTransitionError: No held funds, no helper, or precondition unmet
        """
        policies.require_role(actor, Action.RELEASE)
        logger = cls.get_logger()

        with cls.atomic():
            service_request = cls._lock_request(request_id)
            payment = cls._held_payment(service_request, expected_version)
            dispute = cls._dispute_to_resolve(service_request, resolve_dispute)

            if service_request.workflow_state == RequestState.CANCELLED:
                logger.critical(
                    "Release attempted on a cancelled request with held funds",
                    extra={
                        "payment_id": str(payment.id),
                        "request_id": str(service_request.id),
                        "actor_id": actor.pk,
                    },
                )
                raise ReconciliationDivergenceError(
                    "Cancelled request still holds funds; release refused",
                    details={"payment_id": str(payment.id), "request_id": str(service_request.id)},
                )

            confirmed = service_request.workflow_state == RequestState.CONFIRMED_BY_REQUESTER
            if not (confirmed or admin_override or dispute):
                raise InvalidTransitionError(
                    "Funds can only be released after the requester confirms completion",
                    error_code="RELEASE_NOT_ALLOWED",
                    details={"current_state": service_request.workflow_state},
                )
            if service_request.helper_id is None:
                raise InvalidTransitionError(
                    "This request has no helper to release funds to",
                    error_code="NO_HELPER_ASSIGNED",
                )

            override_used = admin_override and not confirmed and not dispute
            shares = split(payment.amount)

            payment.release(actor, admin_override=override_used, notes=notes)
            payment.add_event(
                "released",
                actor,
                helper_share=shares.helper_share,
                platform_fee=shares.platform_fee,
                admin_override=override_used,
            )
            payment.save()

            escrow = ledger.platform_account(AccountType.PLATFORM_ESCROW, payment.currency)
            entries = []
            if shares.helper_share:
                entries.append(
                    RecordEntryParams(
                        debit_account_id=escrow.id,
                        credit_account_id=ledger.helper_account(
                            service_request.helper_id, payment.currency
                        ).id,
                        amount=shares.helper_share,
                        entry_type=EntryType.PAYMENT_RELEASED,
                        idempotency_key=f"release:{payment.id}:helper",
                        reference_id=payment.id,
                        reference_type=REFERENCE_TYPE,
                        description=f"Helper share for request {service_request.id}",
                        metadata={"helper_id": str(service_request.helper_id)},
                        created_by=str(actor.pk),
                    )
                )
            if shares.platform_fee:
                entries.append(
                    RecordEntryParams(
                        debit_account_id=escrow.id,
                        credit_account_id=ledger.platform_account(
                            AccountType.PLATFORM_REVENUE, payment.currency
                        ).id,
                        amount=shares.platform_fee,
                        entry_type=EntryType.FEE_COLLECTED,
                        idempotency_key=f"release:{payment.id}:fee",
                        reference_id=payment.id,
                        reference_type=REFERENCE_TYPE,
                        description=f"Platform fee for request {service_request.id}",
                        created_by=str(actor.pk),
                    )
                )
            ledger.record_entries(entries)

            if dispute is not None:
                cls._resolve_dispute(dispute, actor, DisputeFlag.Resolution.RELEASED)
            cls._archive(service_request, Action.RELEASE, actor, notes)

            emit(
                "payment.released",
                payment_id=str(payment.id),
                request_id=str(service_request.id),
                requester_id=service_request.requester_id,
                helper_id=service_request.helper_id,
                helper_share=shares.helper_share,
                platform_fee=shares.platform_fee,
            )

        if override_used:
            logger.warning(
                "Funds released by admin override",
                extra={
                    "payment_id": str(payment.id),
                    "request_id": str(service_request.id),
                    "actor_id": actor.pk,
                    "request_state": service_request.workflow_state,
                    "notes": notes,
                },
            )
        logger.info(
            "Payment released",
            extra={
                "payment_id": str(payment.id),
                "request_id": str(service_request.id),
                "actor_id": actor.pk,
                "helper_share": shares.helper_share,
                "platform_fee": shares.platform_fee,
                "dispute_resolved": dispute is not None,
            },
        )
        return payment

    # =========================================================================
    # Refund
    # =========================================================================

    @classmethod
    def refund(
        cls,
        request_id,
        actor: User | None,
        resolve_dispute: bool = False,
        admin_override: bool = False,
        notes: str = "",
        expected_version: int | None = None,
    ) -> Payment:
        """
        Return held funds to the requester.

        ``actor=None`` is the system (cancellation). Admins may refund a
        cancelled, declined or completed-by-helper request, an open
        dispute with resolve_dispute, or anything held with admin_override.

        Raises:
            ForbiddenActionError: Actor is not an admin
            DisputeFrozenError: Open dispute and resolve_dispute not set
            InvalidTransitionError: No held funds or precondition unmet
        """
        if actor is not None:
            policies.require_role(actor, Action.REFUND)

        with cls.atomic():
            service_request = cls._lock_request(request_id)
            payment = cls._held_payment(service_request, expected_version)
            dispute = cls._dispute_to_resolve(service_request, resolve_dispute)

            state_allows = service_request.workflow_state in REFUNDABLE_STATES
            if not (state_allows or admin_override or dispute):
                raise InvalidTransitionError(
                    "Funds can only be refunded for a cancelled, declined, completed or disputed request",
                    error_code="REFUND_NOT_ALLOWED",
                    details={"current_state": service_request.workflow_state},
                )

            cls._refund_locked(
                service_request,
                payment,
                actor=actor,
                admin_override=admin_override and not state_allows and not dispute,
                notes=notes,
                dispute=dispute,
            )
        return payment

    @classmethod
    def refund_on_cancellation(cls, service_request: ServiceRequest) -> Payment | None:
        """
        Refund held funds for a request being cancelled.

        Runs inside the cancellation's transaction; the request row is
        already locked by the caller.
        """
        payment = cls.live_payment(service_request, lock=True)
        if payment is None or payment.escrow_state != EscrowState.HELD:
            return None
        cls._refund_locked(service_request, payment, actor=None, notes="Request cancelled")
        return payment

    @classmethod
    def _refund_locked(
        cls,
        service_request: ServiceRequest,
        payment: Payment,
        actor: User | None,
        admin_override: bool = False,
        notes: str = "",
        dispute: DisputeFlag | None = None,
    ) -> None:
        payment.refund(actor, admin_override=admin_override, notes=notes)
        payment.add_event("refunded", actor, admin_override=admin_override)
        payment.save()

        ledger.record_entry(
            RecordEntryParams(
                debit_account_id=ledger.platform_account(
                    AccountType.PLATFORM_ESCROW, payment.currency
                ).id,
                credit_account_id=ledger.platform_account(
                    AccountType.EXTERNAL_GATEWAY, payment.currency
                ).id,
                amount=payment.amount,
                entry_type=EntryType.REFUND,
                idempotency_key=f"refund:{payment.id}",
                reference_id=payment.id,
                reference_type=REFERENCE_TYPE,
                description=f"Refund for request {service_request.id}",
                metadata={"gateway": payment.gateway, "reason": notes},
                created_by=str(actor.pk) if actor else "system",
            )
        )

        if dispute is not None:
            cls._resolve_dispute(dispute, actor, DisputeFlag.Resolution.REFUNDED)
        cls._archive(service_request, Action.REFUND, actor, notes)

        emit(
            "payment.refunded",
            payment_id=str(payment.id),
            request_id=str(service_request.id),
            requester_id=service_request.requester_id,
            helper_id=service_request.helper_id,
            amount=payment.amount,
        )

        if payment.provider_refund_status == ProviderRefundStatus.PENDING:
            from payments.tasks import issue_provider_refund

            payment_id = str(payment.id)
            transaction.on_commit(lambda: issue_provider_refund.delay(payment_id))

        log = cls.get_logger().warning if admin_override else cls.get_logger().info
        log(
            "Payment refunded",
            extra={
                "payment_id": str(payment.id),
                "request_id": str(service_request.id),
                "actor_id": actor.pk if actor else "system",
                "admin_override": admin_override,
                "dispute_resolved": dispute is not None,
                "notes": notes,
            },
        )

    # =========================================================================
    # Shared steps
    # =========================================================================

    @staticmethod
    def _dispute_to_resolve(
        service_request: ServiceRequest,
        resolve_dispute: bool,
    ) -> DisputeFlag | None:
        dispute = service_request.disputes.select_for_update().filter(resolved=False).first()
        if dispute is None:
            if resolve_dispute:
                raise ValidationError(
                    "There is no open dispute to resolve",
                    error_code="NO_OPEN_DISPUTE",
                    details={"resolve_dispute": ["No open dispute on this request."]},
                )
            return None
        if not resolve_dispute:
            raise DisputeFrozenError(
                "This request is under dispute; set resolve_dispute to settle it",
                details={"dispute_id": str(dispute.id)},
            )
        return dispute

    @staticmethod
    def _resolve_dispute(dispute: DisputeFlag, actor: User | None, resolution: str) -> None:
        dispute.resolve(actor, resolution)
        emit(
            "dispute.resolved",
            dispute_id=str(dispute.id),
            request_id=str(dispute.request_id),
            requester_id=dispute.request.requester_id,
            helper_id=dispute.request.helper_id,
            actor_id=actor.pk if actor else None,
            resolution=resolution,
        )

    @staticmethod
    def _archive(
        service_request: ServiceRequest,
        action: str,
        actor: User | None,
        notes: str,
    ) -> None:
        now = timezone.now()
        ServiceRequest.objects.filter(pk=service_request.pk).update(archived_at=now, updated_at=now)
        service_request.archived_at = now
        RequestTransition.objects.create(
            request=service_request,
            action=action,
            from_state=service_request.workflow_state,
            to_state=service_request.workflow_state,
            actor=actor,
            actor_role=actor.role if actor else "system",
            notes=notes,
        )

    # =========================================================================
    # Previews (used by available-actions)
    # =========================================================================

    @classmethod
    def has_held_funds(cls, service_request: ServiceRequest) -> bool:
        payment = cls.live_payment(service_request)
        return payment is not None and payment.escrow_state == EscrowState.HELD

    @classmethod
    def can_release(cls, service_request: ServiceRequest) -> bool:
        payment = cls.live_payment(service_request)
        return (
            payment is not None
            and payment.escrow_state == EscrowState.HELD
            and service_request.helper_id is not None
            and (
                service_request.workflow_state == RequestState.CONFIRMED_BY_REQUESTER
                or service_request.has_open_dispute
            )
        )

    @classmethod
    def can_refund(cls, service_request: ServiceRequest) -> bool:
        payment = cls.live_payment(service_request)
        return (
            payment is not None
            and payment.escrow_state == EscrowState.HELD
            and (
                service_request.workflow_state in REFUNDABLE_STATES
                or service_request.has_open_dispute
            )
        )
