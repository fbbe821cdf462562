"""
Tests for PaymentService.

Providers are replaced by the fake_stripe / fake_razorpay fixtures, so
these tests drive the real gateways and EscrowService end to end.
"""

import uuid

import pytest

from authentication.tests.factories import RequesterFactory
from core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from payments.exceptions import (
    AlreadyCapturedError,
    AmountMismatchError,
    DuplicateIntentError,
    GatewayRejectedError,
    GatewayUnavailableError,
    InvalidAmountError,
)
from payments.gateways import CaptureResult
from payments.models import Payment
from payments.services import EscrowService, PaymentService
from payments.state_machines import EscrowState, GatewayType, TrustLevel
from payments.tests.factories import PaymentFactory, card_intent, create_held_payment
from service_requests.exceptions import DisputeFrozenError, ForbiddenActionError
from service_requests.tests.factories import DisputeFlagFactory, ServiceRequestFactory


# =============================================================================
# Intent
# =============================================================================


@pytest.mark.django_db
class TestCreateIntent:
    def test_card_intent(self, fake_stripe, open_request, requester):
        payment = PaymentService.create_intent(open_request.id, requester, 49900, GatewayType.CARD)

        assert payment.escrow_state == EscrowState.NONE
        assert payment.payer == requester
        assert payment.currency == "inr"
        assert payment.gateway_reference == "pi_fake"
        assert payment.intent_data["client_secret"] == "pi_fake_secret_123"
        assert payment.events[-1]["action"] == "intent_created"

    def test_retry_returns_same_payment(self, fake_stripe, open_request, requester):
        first = PaymentService.create_intent(open_request.id, requester, 49900, GatewayType.CARD)
        second = PaymentService.create_intent(open_request.id, requester, 49900, GatewayType.CARD)

        assert first.id == second.id
        assert fake_stripe.create_payment_intent.call_count == 1
        assert Payment.objects.filter(request=open_request).count() == 1

    def test_different_amount_conflicts(self, fake_stripe, open_request, requester):
        PaymentService.create_intent(open_request.id, requester, 49900, GatewayType.CARD)

        with pytest.raises(DuplicateIntentError) as exc_info:
            PaymentService.create_intent(open_request.id, requester, 59900, GatewayType.CARD)

        assert exc_info.value.status_code == 409

    def test_funded_request_returns_held_payment(self, fake_stripe, open_request, requester):
        held = create_held_payment(open_request)

        payment = PaymentService.create_intent(open_request.id, requester, 10000, GatewayType.CARD)

        assert payment.id == held.id
        fake_stripe.create_payment_intent.assert_not_called()

    def test_provider_outage_then_retry(self, fake_stripe, open_request, requester):
        """The payment row survives the outage; the retry reuses it."""
        fake_stripe.create_payment_intent.side_effect = GatewayUnavailableError("timeout")

        with pytest.raises(GatewayUnavailableError):
            PaymentService.create_intent(open_request.id, requester, 49900, GatewayType.CARD)

        pending = Payment.objects.get(request=open_request)
        assert pending.gateway_reference == ""

        fake_stripe.create_payment_intent.side_effect = None
        payment = PaymentService.create_intent(open_request.id, requester, 49900, GatewayType.CARD)

        assert payment.id == pending.id
        assert payment.gateway_reference == "pi_fake"

    def test_manual_transfer_intent(self, open_request, requester):
        payment = PaymentService.create_intent(
            open_request.id, requester, 49900, GatewayType.MANUAL_TRANSFER
        )

        assert payment.gateway_reference.startswith("UP")
        assert payment.intent_data["reference"] == payment.gateway_reference
        assert "payee_id" in payment.intent_data

    def test_helper_cannot_pay(self, open_request, helper):
        with pytest.raises(ForbiddenActionError):
            PaymentService.create_intent(open_request.id, helper, 49900, GatewayType.CARD)

    def test_other_requester_cannot_pay(self, open_request):
        with pytest.raises(PermissionDeniedError) as exc_info:
            PaymentService.create_intent(open_request.id, RequesterFactory(), 49900, GatewayType.CARD)

        assert exc_info.value.error_code == "NOT_REQUEST_OWNER"

    @pytest.mark.parametrize("amount", [0, -100, True, "49900"])
    def test_invalid_amount(self, open_request, requester, amount):
        with pytest.raises(InvalidAmountError):
            PaymentService.create_intent(open_request.id, requester, amount, GatewayType.CARD)

    def test_unknown_gateway(self, open_request, requester):
        with pytest.raises(ValidationError) as exc_info:
            PaymentService.create_intent(open_request.id, requester, 49900, "paypal")

        assert exc_info.value.error_code == "UNKNOWN_GATEWAY"

    def test_unknown_request(self, fake_stripe, requester):
        with pytest.raises(NotFoundError):
            PaymentService.create_intent(uuid.uuid4(), requester, 49900, GatewayType.CARD)

    def test_confirmed_request_is_not_payable(self, fake_stripe, confirmed_request, requester):
        with pytest.raises(InvalidTransitionError):
            PaymentService.create_intent(confirmed_request.id, requester, 49900, GatewayType.CARD)

    def test_disputed_request_is_frozen(self, fake_stripe, in_progress_request, requester):
        DisputeFlagFactory(request=in_progress_request)

        with pytest.raises(DisputeFrozenError):
            PaymentService.create_intent(in_progress_request.id, requester, 49900, GatewayType.CARD)


# =============================================================================
# Confirm (card / regional)
# =============================================================================


@pytest.mark.django_db
class TestConfirm:
    @pytest.fixture
    def card_payment(self, fake_stripe, open_request, requester):
        return PaymentService.create_intent(open_request.id, requester, 49900, GatewayType.CARD)

    def test_card_confirm_holds(self, card_payment, requester):
        payment = PaymentService.confirm(
            card_payment.id, requester, {"payment_intent_id": "pi_fake"}
        )

        assert payment.escrow_state == EscrowState.HELD
        assert payment.gateway_transaction_id == "ch_fake"
        assert payment.trust_level == TrustLevel.VERIFIED

    def test_confirm_twice_is_noop(self, fake_stripe, card_payment, requester):
        PaymentService.confirm(card_payment.id, requester, {})
        again = PaymentService.confirm(card_payment.id, requester, {})

        assert again.escrow_state == EscrowState.HELD
        assert fake_stripe.retrieve_payment_intent.call_count == 1

    def test_only_payer(self, card_payment, helper):
        with pytest.raises(PermissionDeniedError) as exc_info:
            PaymentService.confirm(card_payment.id, helper, {})

        assert exc_info.value.error_code == "NOT_PAYER"

    def test_settled_payment(self, card_payment, requester, platform_admin):
        PaymentService.confirm(card_payment.id, requester, {})
        EscrowService.refund(card_payment.request_id, platform_admin, admin_override=True, notes="x")

        with pytest.raises(AlreadyCapturedError):
            PaymentService.confirm(card_payment.id, requester, {})

    def test_provider_captured_less(self, fake_stripe, card_payment, requester):
        fake_stripe.retrieve_payment_intent.return_value = card_intent(
            "succeeded", amount_received=40000
        )

        with pytest.raises(AmountMismatchError):
            PaymentService.confirm(card_payment.id, requester, {})

        assert Payment.objects.get(pk=card_payment.pk).escrow_state == EscrowState.NONE

    def test_unfinished_card_payment(self, fake_stripe, card_payment, requester):
        fake_stripe.retrieve_payment_intent.return_value = card_intent("processing")

        with pytest.raises(GatewayRejectedError):
            PaymentService.confirm(card_payment.id, requester, {})

    def test_regional_confirm(self, fake_razorpay, open_request, requester):
        payment = PaymentService.create_intent(
            open_request.id, requester, 49900, GatewayType.REGIONAL_GATEWAY
        )

        held = PaymentService.confirm(
            payment.id,
            requester,
            {
                "razorpay_order_id": "order_fake",
                "razorpay_payment_id": "pay_fake",
                "razorpay_signature": "sig",
            },
        )

        assert held.escrow_state == EscrowState.HELD
        assert held.gateway_transaction_id == "pay_fake"


# =============================================================================
# Verify (manual transfer)
# =============================================================================


@pytest.mark.django_db
class TestVerify:
    @pytest.fixture
    def manual_payment(self, open_request, requester):
        return PaymentService.create_intent(
            open_request.id, requester, 49900, GatewayType.MANUAL_TRANSFER
        )

    def test_holds_with_low_trust(self, manual_payment, requester):
        payment = PaymentService.verify(
            manual_payment.request_id,
            requester,
            transaction_ref=manual_payment.gateway_reference,
            transaction_id="412345678901",
        )

        assert payment.escrow_state == EscrowState.HELD
        assert payment.trust_level == TrustLevel.LOW
        assert payment.gateway_transaction_id == "412345678901"

    def test_wrong_reference(self, manual_payment, requester):
        with pytest.raises(ValidationError) as exc_info:
            PaymentService.verify(
                manual_payment.request_id, requester, "UP0000000000000", "412345678901"
            )

        assert exc_info.value.error_code == "REFERENCE_MISMATCH"

    def test_only_payer(self, manual_payment, helper):
        with pytest.raises(PermissionDeniedError):
            PaymentService.verify(
                manual_payment.request_id, helper, manual_payment.gateway_reference, "412345678901"
            )

    def test_no_manual_payment(self, fake_stripe, open_request, requester):
        PaymentService.create_intent(open_request.id, requester, 49900, GatewayType.CARD)

        with pytest.raises(NotFoundError):
            PaymentService.verify(open_request.id, requester, "UP1", "412345678901")


# =============================================================================
# Webhook capture and queries
# =============================================================================


@pytest.mark.django_db
class TestCaptureFromProvider:
    def test_holds_matching_payment(self, open_request):
        payment = PaymentFactory(request=open_request, gateway_reference="pi_hook")

        held = PaymentService.capture_from_provider(
            GatewayType.CARD,
            "pi_hook",
            CaptureResult(transaction_id="ch_hook", captured_amount=49900, currency="inr"),
        )

        assert held.id == payment.id
        assert held.escrow_state == EscrowState.HELD

    def test_unknown_reference(self, db):
        assert (
            PaymentService.capture_from_provider(
                GatewayType.CARD,
                "pi_nobody",
                CaptureResult(transaction_id="ch_x", captured_amount=100, currency="inr"),
            )
            is None
        )


@pytest.mark.django_db
class TestVisibility:
    def test_each_role_sees_its_payments(self, requester, helper, other_helper, platform_admin):
        mine = PaymentFactory(
            request=ServiceRequestFactory(requester=requester, helper=helper, in_progress=True)
        )
        unrelated = PaymentFactory()

        assert list(PaymentService.visible_to(requester)) == [mine]
        assert list(PaymentService.visible_to(helper)) == [mine]
        assert list(PaymentService.visible_to(other_helper)) == []
        assert set(PaymentService.visible_to(platform_admin)) == {mine, unrelated}
