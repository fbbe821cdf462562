"""
Ledger - Double-entry bookkeeping for escrowed money.

Public API:
    Models:
        LedgerAccount, LedgerEntry, AccountType, EntryType

    Service:
        ledger - Singleton instance of LedgerService

    Types:
        RecordEntryParams

    Exceptions:
        LedgerError, AccountNotFound, InsufficientBalance, InactiveAccount

Usage:
    from payments.ledger import ledger, AccountType, EntryType, RecordEntryParams

    external = ledger.platform_account(AccountType.EXTERNAL_GATEWAY, "inr")
    escrow = ledger.platform_account(AccountType.PLATFORM_ESCROW, "inr")

    ledger.record_entry(RecordEntryParams(
        debit_account_id=external.id,
        credit_account_id=escrow.id,
        amount=49900,
        entry_type=EntryType.PAYMENT_HELD,
        idempotency_key=f"hold:{payment.id}",
    ))
"""

from .exceptions import (
    AccountNotFound,
    InactiveAccount,
    InsufficientBalance,
    LedgerError,
)
from .models import AccountType, EntryType, LedgerAccount, LedgerEntry
from .services import LedgerService, ledger
from .types import RecordEntryParams

__all__ = [
    "LedgerAccount",
    "LedgerEntry",
    "AccountType",
    "EntryType",
    "ledger",
    "LedgerService",
    "RecordEntryParams",
    "LedgerError",
    "AccountNotFound",
    "InsufficientBalance",
    "InactiveAccount",
]
