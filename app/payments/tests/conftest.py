"""
Pytest fixtures for payment tests.

Gateways are swapped through the registry so services, views and tasks
all see the same fake provider. The fake adapters are MagicMocks whose
methods return real adapter result types.

Usage:
    def test_confirm(fake_stripe, open_request, requester):
        fake_stripe.retrieve_payment_intent.return_value = card_intent("processing")
        ...
"""

import pytest

from payments.adapters import OrderResult, RefundResult, RegionalRefundResult
from payments.gateways import CardGateway, RegionalGateway, registry
from payments.state_machines import GatewayType
from payments.tests.factories import card_intent, regional_payment
from service_requests.tests.factories import ServiceRequestFactory


# =============================================================================
# Fake providers
# =============================================================================


@pytest.fixture
def fake_stripe(mocker):
    """Card rail backed by a mock Stripe adapter."""
    adapter = mocker.MagicMock(name="StripeAdapter")
    adapter.create_payment_intent.return_value = card_intent()
    adapter.retrieve_payment_intent.return_value = card_intent("succeeded")
    adapter.create_refund.return_value = RefundResult(
        id="re_fake",
        amount=49900,
        currency="inr",
        status="succeeded",
        payment_intent_id="pi_fake",
    )

    registry.register(GatewayType.CARD, lambda: CardGateway(adapter=adapter))
    yield adapter
    registry.register(GatewayType.CARD, CardGateway)


@pytest.fixture
def fake_razorpay(mocker):
    """Regional rail backed by a mock Razorpay adapter."""
    adapter = mocker.MagicMock(name="RazorpayAdapter")
    adapter.create_order.return_value = OrderResult(
        id="order_fake", amount=49900, currency="inr", status="created"
    )
    adapter.verify_payment_signature.return_value = None
    adapter.fetch_payment.return_value = regional_payment()
    adapter.create_refund.return_value = RegionalRefundResult(
        id="rfnd_fake", payment_id="pay_fake", amount=49900, status="processed"
    )

    registry.register(GatewayType.REGIONAL_GATEWAY, lambda: RegionalGateway(adapter=adapter))
    yield adapter
    registry.register(GatewayType.REGIONAL_GATEWAY, RegionalGateway)


# =============================================================================
# Requests in each workflow state
# =============================================================================


@pytest.fixture
def open_request(requester):
    return ServiceRequestFactory(requester=requester)


@pytest.fixture
def in_progress_request(requester, helper):
    return ServiceRequestFactory(requester=requester, helper=helper, in_progress=True)


@pytest.fixture
def completed_request(requester, helper):
    return ServiceRequestFactory(requester=requester, helper=helper, completed=True)


@pytest.fixture
def confirmed_request(requester, helper):
    return ServiceRequestFactory(requester=requester, helper=helper, confirmed=True)


@pytest.fixture
def cancelled_request(requester):
    return ServiceRequestFactory(requester=requester, cancelled=True)


@pytest.fixture
def emitted(mocker):
    """Captures domain events emitted by the escrow service."""
    return mocker.patch("payments.services.escrow_service.emit")
