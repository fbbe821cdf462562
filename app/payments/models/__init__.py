"""
Payment domain models.

- Payment: Escrowed payment funding one service request
- WebhookEvent: Provider webhook tracking for idempotent processing
- ReconciliationRun / ReconciliationDiscrepancy: Divergence sweep history
- LedgerAccount / LedgerEntry: Double-entry ledger (payments.ledger)
"""

from payments.ledger.models import LedgerAccount, LedgerEntry
from payments.models.payment import Payment
from payments.models.reconciliation import (
    DiscrepancyType,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    ReconciliationRunStatus,
)
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "DiscrepancyType",
    "LedgerAccount",
    "LedgerEntry",
    "Payment",
    "ReconciliationDiscrepancy",
    "ReconciliationRun",
    "ReconciliationRunStatus",
    "WebhookEvent",
]
