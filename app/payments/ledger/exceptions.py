"""
Ledger-specific exceptions for financial operations.

Exception Hierarchy:
    LedgerError (base, kind=Conflict)
    ├── AccountNotFound - Account lookup failures (kind=NotFound)
    ├── InsufficientBalance - Debit would overdraw the account
    └── InactiveAccount - Operations on inactive accounts
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import ConflictError

if TYPE_CHECKING:
    import uuid
    from typing import Any


class LedgerError(ConflictError):
    """Base exception for all ledger operations."""

    default_error_code: str = "LEDGER_ERROR"


class AccountNotFound(LedgerError):
    """Raised when a ledger account cannot be found."""

    kind: str = "NotFound"
    status_code: int = 404
    default_error_code: str = "ACCOUNT_NOT_FOUND"


class InsufficientBalance(LedgerError):
    """
    Raised when an account has insufficient funds for a debit.

    Attributes:
        account_id: The account that would be overdrawn
        required: Minor units required
        available: Minor units available
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        account_id: uuid.UUID,
        required: int,
        available: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.account_id = account_id
        self.required = required
        self.available = available

        full_details = {
            "account_id": str(account_id),
            "required": required,
            "available": available,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=(
                f"Account {account_id} has insufficient balance: "
                f"required {required}, available {available}"
            ),
            error_code=error_code,
            details=full_details,
        )


class InactiveAccount(LedgerError):
    """Raised when attempting to use an inactive account."""

    default_error_code: str = "INACTIVE_ACCOUNT"
