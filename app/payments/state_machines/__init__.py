"""
State machine enums for payment models.
"""

from payments.state_machines.states import (
    EscrowState,
    GatewayType,
    ProviderRefundStatus,
    TrustLevel,
    WebhookEventStatus,
)

__all__ = [
    "EscrowState",
    "GatewayType",
    "ProviderRefundStatus",
    "TrustLevel",
    "WebhookEventStatus",
]
