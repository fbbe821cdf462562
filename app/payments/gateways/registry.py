"""
Gateway registry: maps a GatewayType to its implementation.

Tests swap implementations with ``register``:

    registry.register(GatewayType.CARD, lambda: CardGateway(adapter=FakeStripe))
"""

from __future__ import annotations

from collections.abc import Callable

from core.exceptions import ValidationError

from payments.gateways.base import PaymentGateway
from payments.gateways.card import CardGateway
from payments.gateways.manual import ManualTransferGateway
from payments.gateways.regional import RegionalGateway
from payments.state_machines import GatewayType


class GatewayRegistry:
    def __init__(self) -> None:
        self._factories: dict[str, Callable[[], PaymentGateway]] = {}

    def register(self, gateway_type: str, factory: Callable[[], PaymentGateway]) -> None:
        self._factories[str(gateway_type)] = factory

    def get(self, gateway_type: str) -> PaymentGateway:
        factory = self._factories.get(str(gateway_type))
        if factory is None:
            supported = ", ".join(self._factories)
            raise ValidationError(
                f"Unknown gateway: {gateway_type}. Supported: {supported}",
                error_code="UNKNOWN_GATEWAY",
                details={"gateway": [f"Must be one of: {supported}."]},
            )
        return factory()

    def public_config(self) -> dict[str, dict]:
        return {name: factory().public_config() for name, factory in self._factories.items()}


registry = GatewayRegistry()
registry.register(GatewayType.CARD, CardGateway)
registry.register(GatewayType.REGIONAL_GATEWAY, RegionalGateway)
registry.register(GatewayType.MANUAL_TRANSFER, ManualTransferGateway)


def get_gateway(gateway_type: str) -> PaymentGateway:
    return registry.get(gateway_type)
