"""
Pytest fixtures for webhook tests.
"""

import pytest

from payments.models import WebhookEvent
from payments.state_machines import GatewayType
from payments.tests.factories import PaymentFactory, WebhookEventFactory
from service_requests.tests.factories import ServiceRequestFactory

from .payloads import captured_entity, regional_payload, stripe_payload, succeeded_intent


# =============================================================================
# Payments awaiting a webhook
# =============================================================================


@pytest.fixture
def open_request(requester):
    return ServiceRequestFactory(requester=requester)


@pytest.fixture
def card_payment(open_request):
    return PaymentFactory(request=open_request, gateway_reference="pi_hook")


@pytest.fixture
def regional_payment(open_request):
    return PaymentFactory(
        request=open_request,
        gateway=GatewayType.REGIONAL_GATEWAY,
        gateway_reference="order_hook",
    )


@pytest.fixture
def succeeded_event(card_payment):
    return WebhookEventFactory(
        event_type="payment_intent.succeeded",
        payload=stripe_payload("payment_intent.succeeded", succeeded_intent()),
    )


@pytest.fixture
def regional_captured_event(regional_payment):
    return WebhookEventFactory(
        provider=WebhookEvent.Provider.REGIONAL,
        event_type="payment.captured",
        payload=regional_payload("payment.captured", payment=captured_entity()),
    )
