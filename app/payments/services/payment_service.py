"""
Payment service: intents, confirmations and manual verification.

Entry point for everything a requester does with money. Gateways do the
provider work; EscrowService moves the Payment into escrow.

Provider calls never run inside a database transaction. The Payment row
is created (or reused) under the request lock, the lock is released, and
only then is the provider contacted with an idempotency key derived from
the payment id. A retried intent therefore lands on the same provider
object.

Idempotency of create_intent:
    - funds already held or released        -> existing payment returned
    - live payment, same amount and gateway -> existing payment returned
    - live payment, different amount/gateway -> DuplicateIntentError

Usage:
    from payments.services import PaymentService

    payment = PaymentService.create_intent(request_id, requester, amount=49900, gateway="card")
    payment.intent_data  # {"payment_intent_id": ..., "client_secret": ..., "publishable_key": ...}

    PaymentService.confirm(payment.id, requester, proof={"payment_intent_id": "pi_..."})
    PaymentService.verify(request_id, requester, transaction_ref="UP1761...", transaction_id="4123...")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError
from django.db.models import Q

from core.exceptions import InvalidTransitionError, NotFoundError, PermissionDeniedError
from core.services import BaseService

from payments.exceptions import (
    AlreadyCapturedError,
    DuplicateIntentError,
    InvalidAmountError,
)
from payments.gateways import get_gateway, registry
from payments.models import Payment
from payments.services.escrow_service import EscrowService
from payments.state_machines import EscrowState, GatewayType
from service_requests import policies
from service_requests.models import ServiceRequest
from service_requests.states import PAYABLE_STATES, Action

if TYPE_CHECKING:
    from authentication.models import User
    from payments.gateways import CaptureResult

logger = logging.getLogger(__name__)


class PaymentService(BaseService):
    """
    Requester-facing payment operations.

    All methods are class methods - no instance state is maintained.
    """

    @staticmethod
    def _currency() -> str:
        return getattr(settings, "ESCROW_CURRENCY", "inr")

    @staticmethod
    def _validate_amount(amount: Any) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError(
                "Amount must be a positive integer in minor units",
                details={"amount": ["Must be a positive integer."]},
            )
        return amount

    # =========================================================================
    # Intent
    # =========================================================================

    @classmethod
    def create_intent(
        cls,
        request_id,
        actor: User,
        amount: int,
        gateway: str,
    ) -> Payment:
        """
        Create (or return) the payment intent for a request.

        Raises:
            ForbiddenActionError: Actor is not a requester
            PermissionDeniedError: Actor does not own the request
            DisputeFrozenError: Request is under dispute
            InvalidTransitionError: Request is not payable
            InvalidAmountError / ValidationError: Bad amount or gateway
            DuplicateIntentError: A different live payment exists
            GatewayUnavailableError / GatewayRejectedError: Provider failure
        """
        policies.require_role(actor, Action.PAY)
        amount = cls._validate_amount(amount)
        provider = get_gateway(gateway)

        with cls.atomic():
            service_request = (
                ServiceRequest.objects.select_for_update().filter(pk=request_id).first()
            )
            if service_request is None:
                raise NotFoundError(
                    f"Request {request_id} not found",
                    error_code="REQUEST_NOT_FOUND",
                )
            policies.require_party(service_request, actor, Action.PAY)
            policies.require_not_frozen(service_request, Action.PAY)

            payment = EscrowService.live_payment(service_request, lock=True)
            if payment is not None:
                if payment.escrow_state != EscrowState.NONE:
                    logger.info(
                        "Intent requested for already funded request",
                        extra={"payment_id": str(payment.id), "escrow_state": payment.escrow_state},
                    )
                    return payment
                if payment.amount != amount or payment.gateway != gateway:
                    raise DuplicateIntentError(
                        "A payment with a different amount or gateway already exists for this request",
                        details={
                            "payment_id": str(payment.id),
                            "amount": payment.amount,
                            "gateway": payment.gateway,
                        },
                    )
                if payment.gateway_reference:
                    return payment
            else:
                if (
                    service_request.workflow_state not in PAYABLE_STATES
                    or service_request.is_archived
                ):
                    raise InvalidTransitionError(
                        f"Cannot pay for a request that is '{service_request.workflow_state}'",
                        details={"current_state": service_request.workflow_state},
                    )
                try:
                    with cls.atomic():
                        payment = Payment.objects.create(
                            request=service_request,
                            payer=actor,
                            amount=amount,
                            currency=cls._currency(),
                            gateway=gateway,
                        )
                except IntegrityError as e:
                    raise DuplicateIntentError(
                        "A payment already exists for this request",
                    ) from e

        intent = provider.create_intent(payment)

        payment.gateway_reference = intent.reference
        payment.intent_data = intent.client_data
        payment.add_event("intent_created", actor, gateway=gateway)
        payment.save(update_fields=["gateway_reference", "intent_data", "events", "updated_at"])

        logger.info(
            "Payment intent created",
            extra={
                "payment_id": str(payment.id),
                "request_id": str(payment.request_id),
                "gateway": gateway,
                "amount": amount,
            },
        )
        return payment

    # =========================================================================
    # Capture paths
    # =========================================================================

    @staticmethod
    def _payer_payment(payment_id, actor: User) -> Payment:
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", error_code="PAYMENT_NOT_FOUND")
        if payment.payer_id != actor.pk:
            raise PermissionDeniedError(
                "Only the payer may confirm this payment",
                error_code="NOT_PAYER",
            )
        return payment

    @staticmethod
    def _ensure_capturable(payment: Payment) -> bool:
        """False when already held (idempotent no-op); raises when settled."""
        if payment.escrow_state == EscrowState.NONE:
            return True
        if payment.escrow_state == EscrowState.HELD:
            return False
        raise AlreadyCapturedError(
            f"This payment is already {payment.escrow_state}",
            details={"escrow_state": payment.escrow_state},
        )

    @classmethod
    def confirm(cls, payment_id, actor: User, proof: dict[str, Any]) -> Payment:
        """
        Confirm a card or regional-gateway payment from the client's proof.

        Raises:
            PermissionDeniedError: Actor is not the payer
            UnsupportedGatewayOperation: Manual transfers use verify()
            GatewayRejectedError: Proof invalid or payment not completed
            AmountMismatchError: Provider captured a different amount
        """
        payment = cls._payer_payment(payment_id, actor)
        if not cls._ensure_capturable(payment):
            return payment

        capture = get_gateway(payment.gateway).confirm(payment, proof)
        return EscrowService.capture(payment.id, capture, actor=actor)

    @classmethod
    def verify(
        cls,
        request_id,
        actor: User,
        transaction_ref: str,
        transaction_id: str,
    ) -> Payment:
        """
        Record a manual transfer from the user-supplied transaction id.

        The capture is stored with trust_level=low for admin follow-up.
        """
        payment = (
            Payment.objects.filter(request_id=request_id, gateway=GatewayType.MANUAL_TRANSFER)
            .exclude(escrow_state=EscrowState.REFUNDED)
            .first()
        )
        if payment is None:
            raise NotFoundError(
                "No manual transfer is pending for this request",
                error_code="PAYMENT_NOT_FOUND",
            )
        if payment.payer_id != actor.pk:
            raise PermissionDeniedError(
                "Only the payer may verify this payment",
                error_code="NOT_PAYER",
            )
        if not cls._ensure_capturable(payment):
            return payment

        capture = get_gateway(payment.gateway).verify(payment, transaction_ref, transaction_id)
        payment = EscrowService.capture(payment.id, capture, actor=actor)
        logger.warning(
            "Manual transfer accepted on user-supplied reference",
            extra={
                "payment_id": str(payment.id),
                "request_id": str(payment.request_id),
                "transaction_ref": transaction_ref,
            },
        )
        return payment

    @classmethod
    def capture_from_provider(
        cls,
        gateway: str,
        reference: str,
        capture: CaptureResult,
    ) -> Payment | None:
        """
        Capture driven by a verified provider webhook.

        Returns None when no payment matches ``reference``.
        """
        payment = Payment.objects.filter(gateway=gateway, gateway_reference=reference).first()
        if payment is None:
            logger.warning(
                "Webhook capture for unknown payment",
                extra={"gateway": gateway, "reference": reference},
            )
            return None
        if not cls._ensure_capturable(payment):
            return payment
        return EscrowService.capture(payment.id, capture)

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def gateway_config() -> dict[str, dict]:
        """Public client configuration for every gateway."""
        return registry.public_config()

    @staticmethod
    def payments_for_request(service_request: ServiceRequest):
        return Payment.objects.filter(request=service_request).order_by("created_at")

    @staticmethod
    def visible_to(actor: User):
        """Payer sees own payments, helper sees payments on assigned requests, admin sees all."""
        qs = Payment.objects.select_related("request")
        if actor.is_admin_role:
            return qs
        return qs.filter(Q(payer=actor) | Q(request__helper=actor))
