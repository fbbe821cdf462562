"""
Tests for RazorpayAdapter.

razorpay.Client is patched for API calls; signatures run through the
real SDK with the test secrets from .env.test.
"""

import hashlib
import hmac

import pytest
import requests
from django.conf import settings
from razorpay.errors import BadRequestError, GatewayError, ServerError

from payments.adapters import RazorpayAdapter
from payments.exceptions import GatewayRejectedError, GatewayUnavailableError


def _sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class TestCreateOrder:
    def test_creates_order_with_timeout(self, mock_razorpay_client):
        mock_razorpay_client.order.create.return_value = {
            "id": "order_1",
            "amount": 49900,
            "currency": "INR",
            "status": "created",
            "receipt": "r",
        }

        order = RazorpayAdapter.create_order(49900, "inr", receipt="x" * 60, notes={"payment_id": "p1"})

        assert order.id == "order_1"
        assert order.currency == "inr"
        (data,) = mock_razorpay_client.order.create.call_args.args
        assert data["currency"] == "INR"
        assert len(data["receipt"]) == 40
        assert data["notes"] == {"payment_id": "p1"}
        assert mock_razorpay_client.order.create.call_args.kwargs["timeout"] == (
            settings.REGIONAL_GATEWAY_TIMEOUT_SECONDS
        )


class TestFetchPayment:
    def test_captured_payment(self, mock_razorpay_client):
        mock_razorpay_client.payment.fetch.return_value = {
            "id": "pay_1",
            "order_id": "order_1",
            "amount": 49900,
            "currency": "INR",
            "status": "captured",
            "method": "upi",
        }

        payment = RazorpayAdapter.fetch_payment("pay_1")

        assert payment.captured is True
        assert payment.method == "upi"
        assert mock_razorpay_client.payment.fetch.call_args.args == ("pay_1",)

    def test_authorized_is_not_captured(self, mock_razorpay_client):
        mock_razorpay_client.payment.fetch.return_value = {
            "id": "pay_1",
            "amount": 49900,
            "currency": "INR",
            "status": "authorized",
        }

        assert RazorpayAdapter.fetch_payment("pay_1").captured is False


class TestCreateRefund:
    def test_refund_carries_receipt(self, mock_razorpay_client):
        mock_razorpay_client.payment.refund.return_value = {
            "id": "rfnd_1",
            "payment_id": "pay_1",
            "amount": 49900,
            "status": "processed",
        }

        refund = RazorpayAdapter.create_refund("pay_1", 49900, receipt="refund-p1")

        assert refund.id == "rfnd_1"
        payment_id, data = mock_razorpay_client.payment.refund.call_args.args
        assert payment_id == "pay_1"
        assert data["receipt"] == "refund-p1"


class TestErrorTranslation:
    @pytest.mark.parametrize("error", [GatewayError("gateway down"), ServerError("oops")])
    def test_gateway_and_server_errors_are_unavailable(self, mock_razorpay_client, error):
        mock_razorpay_client.payment.fetch.side_effect = error

        with pytest.raises(GatewayUnavailableError) as exc_info:
            RazorpayAdapter.fetch_payment("pay_1")

        assert exc_info.value.provider_code == type(error).__name__

    @pytest.mark.parametrize("error", [requests.Timeout("slow"), requests.ConnectionError("down")])
    def test_network_failures_are_unavailable(self, mock_razorpay_client, error):
        mock_razorpay_client.order.create.side_effect = error

        with pytest.raises(GatewayUnavailableError) as exc_info:
            RazorpayAdapter.create_order(100, "inr", receipt="r")

        assert exc_info.value.provider_code == type(error).__name__

    def test_bad_requests_are_rejections(self, mock_razorpay_client):
        mock_razorpay_client.payment.refund.side_effect = BadRequestError("amount too low")

        with pytest.raises(GatewayRejectedError) as exc_info:
            RazorpayAdapter.create_refund("pay_1", 100, receipt="refund-p1")

        assert exc_info.value.provider_code == "BadRequestError"
        assert exc_info.value.error_code == "INVALID_PROVIDER_REQUEST"


class TestSignatures:
    def test_valid_payment_signature(self):
        signature = _sign(settings.RAZORPAY_KEY_SECRET, b"order_1|pay_1")

        RazorpayAdapter.verify_payment_signature("order_1", "pay_1", signature)

    def test_tampered_payment_signature(self):
        signature = _sign(settings.RAZORPAY_KEY_SECRET, b"order_1|pay_2")

        with pytest.raises(GatewayRejectedError) as exc_info:
            RazorpayAdapter.verify_payment_signature("order_1", "pay_1", signature)

        assert exc_info.value.error_code == "INVALID_SIGNATURE"

    def test_webhook_signature_uses_webhook_secret(self):
        body = b'{"event":"payment.captured"}'

        RazorpayAdapter.verify_webhook_signature(body, _sign(settings.RAZORPAY_WEBHOOK_SECRET, body))
        with pytest.raises(GatewayRejectedError):
            RazorpayAdapter.verify_webhook_signature(body, _sign(settings.RAZORPAY_KEY_SECRET, body))
