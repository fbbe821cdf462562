"""
Payment services.

This module provides:
- PaymentService: Intents, confirmations and manual verification
- EscrowService: none -> held -> released | refunded, with ledger entries
- SettlementService: Fee split and dashboards
- ReconciliationService: Request/payment/ledger divergence sweep

Usage:
    from payments.services import PaymentService, EscrowService

    payment = PaymentService.create_intent(request_id, requester, amount=49900, gateway="card")
    EscrowService.release(request_id, actor=admin)
"""

from payments.services.escrow_service import EscrowService
from payments.services.payment_service import PaymentService
from payments.services.reconciliation_service import (
    Discrepancy,
    ReconciliationRunResult,
    ReconciliationService,
)
from payments.services.settlement import (
    HelperEarnings,
    RequesterSpend,
    SettlementService,
    Split,
    split,
)

__all__ = [
    "Discrepancy",
    "EscrowService",
    "HelperEarnings",
    "PaymentService",
    "ReconciliationRunResult",
    "ReconciliationService",
    "RequesterSpend",
    "SettlementService",
    "Split",
    "split",
]
