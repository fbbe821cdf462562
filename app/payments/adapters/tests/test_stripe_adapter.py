"""
Tests for StripeAdapter.

The Stripe SDK is patched at the module level; no network calls are made.
"""

import uuid

import pytest
import stripe

from payments.adapters import (
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    StripeAdapter,
)
from payments.exceptions import GatewayRejectedError, GatewayUnavailableError


def _params(**overrides):
    defaults = {"amount": 49900, "currency": "inr", "idempotency_key": "create_intent:p1:1:abcd"}
    return CreatePaymentIntentParams(**{**defaults, **overrides})


class TestCreatePaymentIntentParams:
    def test_defaults_to_card(self):
        assert _params().payment_method_types == ["card"]

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"amount": 0}, "amount"),
            ({"idempotency_key": ""}, "idempotency_key"),
            ({"currency": ""}, "currency"),
        ],
    )
    def test_rejects_invalid_params(self, overrides, message):
        with pytest.raises(ValueError, match=message):
            _params(**overrides)


class TestIdempotencyKeyGenerator:
    def test_key_format(self):
        payment_id = uuid.uuid4()

        key = IdempotencyKeyGenerator.generate("create_intent", payment_id)

        operation, entity, attempt, digest = key.split(":")
        assert operation == "create_intent"
        assert entity == str(payment_id)
        assert attempt == "1"
        assert len(digest) == 8

    def test_same_inputs_same_key(self):
        """A retried intent must replay the same provider call."""
        payment_id = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("refund", payment_id) == IdempotencyKeyGenerator.generate(
            "refund", payment_id
        )

    def test_operation_and_attempt_change_key(self):
        payment_id = uuid.uuid4()
        base = IdempotencyKeyGenerator.generate("create_intent", payment_id)

        assert IdempotencyKeyGenerator.generate("refund", payment_id) != base
        assert IdempotencyKeyGenerator.generate("create_intent", payment_id, attempt=2) != base


# =============================================================================
# Operations
# =============================================================================


class TestCreatePaymentIntent:
    def test_success(self, mock_stripe_payment_intent):
        result = StripeAdapter.create_payment_intent(_params(metadata={"payment_id": "p1"}))

        assert result.id == "pi_test123456"
        assert result.client_secret == "pi_test123456_secret_abc123"
        assert result.succeeded is False
        mock_stripe_payment_intent.create.assert_called_once_with(
            amount=49900,
            currency="inr",
            metadata={"payment_id": "p1"},
            payment_method_types=["card"],
            idempotency_key="create_intent:p1:1:abcd",
        )


class TestRetrievePaymentIntent:
    def test_succeeded_intent(self, mock_stripe_payment_intent, mock_payment_intent):
        mock_stripe_payment_intent.retrieve.return_value = mock_payment_intent(
            status="succeeded",
            amount_received=49900,
            latest_charge="ch_123",
            metadata={"payment_id": "p1"},
        )

        result = StripeAdapter.retrieve_payment_intent("pi_test123456")

        assert result.succeeded is True
        assert result.amount_received == 49900
        assert result.latest_charge == "ch_123"
        assert result.metadata == {"payment_id": "p1"}


class TestCreateRefund:
    def test_full_refund(self, mock_stripe_refund):
        result = StripeAdapter.create_refund(
            "pi_test123456",
            idempotency_key="refund:p1:1:abcd",
            amount=49900,
            metadata={"payment_id": "p1"},
        )

        assert result.id == "re_test123456"
        assert result.status == "succeeded"
        assert result.payment_intent_id == "pi_test123456"
        mock_stripe_refund.create.assert_called_once_with(
            idempotency_key="refund:p1:1:abcd",
            payment_intent="pi_test123456",
            metadata={"payment_id": "p1"},
            amount=49900,
        )


class TestVerifyWebhookSignature:
    def test_valid_signature_returns_event_dict(self, mock_stripe_webhook):
        event = StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert event["id"] == "evt_test123"

    def test_bad_signature(self, mock_stripe_webhook):
        mock_stripe_webhook.construct_event.side_effect = stripe.SignatureVerificationError(
            "Unable to verify", "t=1,v1=bad"
        )

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=bad")

        assert exc_info.value.error_code == "INVALID_WEBHOOK_SIGNATURE"

    def test_bad_payload(self, mock_stripe_webhook):
        mock_stripe_webhook.construct_event.side_effect = ValueError("not json")

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"nope", "t=1,v1=abc")

        assert exc_info.value.error_code == "INVALID_WEBHOOK_PAYLOAD"


# =============================================================================
# Error translation
# =============================================================================


class TestErrorTranslation:
    """
    Provider refusals become GatewayRejected; outages become
    GatewayUnavailable, which callers may retry.
    """

    def test_card_declined(self, mock_stripe_payment_intent, card_error):
        mock_stripe_payment_intent.create.side_effect = card_error()

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeAdapter.create_payment_intent(_params())

        assert exc_info.value.error_code == "CARD_DECLINED"
        assert exc_info.value.provider_code == "generic_decline"

    def test_invalid_request(self, mock_stripe_payment_intent, invalid_request_error):
        mock_stripe_payment_intent.retrieve.side_effect = invalid_request_error

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeAdapter.retrieve_payment_intent("pi_missing")

        assert exc_info.value.error_code == "INVALID_PROVIDER_REQUEST"
        assert exc_info.value.provider_code == "resource_missing"

    def test_authentication_error(self, mock_stripe_payment_intent, authentication_error):
        mock_stripe_payment_intent.create.side_effect = authentication_error

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeAdapter.create_payment_intent(_params())

        assert exc_info.value.error_code == "PROVIDER_AUTHENTICATION_FAILED"

    @pytest.mark.parametrize(
        "error_fixture, provider_code",
        [
            ("rate_limit_error", "rate_limit"),
            ("api_connection_error", "api_connection_error"),
            ("api_error", "api_error"),
        ],
    )
    def test_outages_are_retryable(self, request, mock_stripe_payment_intent, error_fixture, provider_code):
        mock_stripe_payment_intent.create.side_effect = request.getfixturevalue(error_fixture)

        with pytest.raises(GatewayUnavailableError) as exc_info:
            StripeAdapter.create_payment_intent(_params())

        assert exc_info.value.is_retryable is True
        assert exc_info.value.provider_code == provider_code
        assert exc_info.value.status_code == 503
