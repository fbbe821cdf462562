"""
Payments app: escrow for service requests.

This app handles:
- Payment intents and captures across the card, regional and manual gateways
- The escrow hold, release and refund, each backed by ledger entries
- Settlement splits, earnings and withdrawals
- Provider webhooks and the reconciliation sweep

Related apps:
    - service_requests: Workflow state the escrow follows
    - notifications: Consumes escrow events

Usage:
    from payments.services import EscrowService, PaymentService

    payment = PaymentService.create_intent(request_id, requester, 49900, GatewayType.CARD)
    EscrowService.release(request_id, platform_admin)
"""
