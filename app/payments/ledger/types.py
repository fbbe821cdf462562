"""
Data types for ledger operations.

Types:
    RecordEntryParams: Parameters for recording a ledger entry

Usage:
    from payments.ledger.types import RecordEntryParams

    params = RecordEntryParams(
        debit_account_id=external_account.id,
        credit_account_id=escrow_account.id,
        amount=49900,
        entry_type=EntryType.PAYMENT_HELD,
        idempotency_key=f"hold:{payment.id}",
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RecordEntryParams:
    """
    Parameters for recording a ledger entry.

    Every entry debits one account and credits another.

    Required Attributes:
        debit_account_id: Account money leaves
        credit_account_id: Account money enters
        amount: Minor units, must be positive
        entry_type: EntryType value
        idempotency_key: Unique key; replays return the existing entry

    Optional Attributes:
        reference_id / reference_type: Business entity (payment, request)
        description: Human-readable description
        metadata: JSON-serializable context (gateway, trust level, actor)
        created_by: Service or user that produced the entry
    """

    debit_account_id: uuid.UUID
    credit_account_id: uuid.UUID
    amount: int
    entry_type: str
    idempotency_key: str

    reference_id: uuid.UUID | None = None
    reference_type: str | None = None
    description: str | None = None
    metadata: dict[str, Any] | None = field(default_factory=dict)
    created_by: str | None = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if self.debit_account_id == self.credit_account_id:
            raise ValueError("debit_account_id and credit_account_id must be different")
