"""
Payment gateways: one interchangeable implementation per rail.

Usage:
    from payments.gateways import get_gateway

    gateway = get_gateway(payment.gateway)
    intent = gateway.create_intent(payment)
"""

from payments.gateways.base import (
    CaptureResult,
    IntentResult,
    PaymentGateway,
    ProviderRefundResult,
    UnsupportedGatewayOperation,
)
from payments.gateways.card import CardGateway
from payments.gateways.manual import ManualTransferGateway, generate_reference_code
from payments.gateways.regional import RegionalGateway
from payments.gateways.registry import GatewayRegistry, get_gateway, registry

__all__ = [
    "CaptureResult",
    "CardGateway",
    "GatewayRegistry",
    "IntentResult",
    "ManualTransferGateway",
    "PaymentGateway",
    "ProviderRefundResult",
    "RegionalGateway",
    "UnsupportedGatewayOperation",
    "generate_reference_code",
    "get_gateway",
    "registry",
]
