"""
Ledger service layer for financial operations.

All ledger writes go through LedgerService so that accounts are locked in
a consistent order and every entry is idempotent by key.

Usage:
    from payments.ledger.services import ledger
    from payments.ledger.types import RecordEntryParams

    escrow = ledger.platform_account(AccountType.PLATFORM_ESCROW, "inr")
    helper = ledger.helper_account(helper_user.id, "inr")

    ledger.record_entries([
        RecordEntryParams(
            debit_account_id=escrow.id,
            credit_account_id=helper.id,
            amount=44910,
            entry_type=EntryType.PAYMENT_RELEASED,
            idempotency_key=f"release:{payment.id}:helper",
        ),
        ...
    ])
"""

from __future__ import annotations

import uuid

from django.db import IntegrityError, transaction
from django.db.models import Sum

from .exceptions import AccountNotFound, InactiveAccount, InsufficientBalance
from .models import AccountType, LedgerAccount, LedgerEntry
from .types import RecordEntryParams

# Accounts that mirror the outside world or absorb fees may go negative
NEGATIVE_ALLOWED = {AccountType.EXTERNAL_GATEWAY}


class LedgerService:
    """
    Service class for ledger operations.

    Key features:
    - Atomic transactions for multi-entry operations
    - Idempotency via unique keys (safe to retry)
    - Balance validation before debits
    - Account locking ordered by id to prevent deadlocks

    All methods are static - no instance state is maintained.
    """

    @staticmethod
    def get_or_create_account(
        account_type: AccountType | str,
        owner_id: str = "",
        currency: str = "inr",
    ) -> LedgerAccount:
        """Get the (type, owner, currency) account, creating it on first use."""
        try:
            account, _ = LedgerAccount.objects.get_or_create(
                type=account_type,
                owner_id=owner_id,
                currency=currency,
                defaults={"allow_negative": account_type in NEGATIVE_ALLOWED},
            )
        except IntegrityError:
            # Concurrent first use created it
            account = LedgerAccount.objects.get(
                type=account_type, owner_id=owner_id, currency=currency
            )
        return account

    @staticmethod
    def platform_account(account_type: AccountType | str, currency: str) -> LedgerAccount:
        return LedgerService.get_or_create_account(account_type, "", currency)

    @staticmethod
    def helper_account(helper_id, currency: str) -> LedgerAccount:
        return LedgerService.get_or_create_account(
            AccountType.HELPER_BALANCE, str(helper_id), currency
        )

    @staticmethod
    def get_account_by_owner(
        account_type: AccountType | str,
        owner_id,
        currency: str = "inr",
    ) -> LedgerAccount | None:
        return LedgerAccount.objects.filter(
            type=account_type,
            owner_id=str(owner_id),
            currency=currency,
        ).first()

    @staticmethod
    def _validate_account_for_debit(account: LedgerAccount, amount: int) -> None:
        if not account.is_active:
            raise InactiveAccount(
                f"Account {account.id} is inactive",
                details={"account_id": str(account.id)},
            )

        if not account.allow_negative:
            current_balance = account.get_balance()
            if current_balance < amount:
                raise InsufficientBalance(
                    account_id=account.id,
                    required=amount,
                    available=current_balance,
                )

    @staticmethod
    def _validate_account_for_credit(account: LedgerAccount) -> None:
        if not account.is_active:
            raise InactiveAccount(
                f"Account {account.id} is inactive",
                details={"account_id": str(account.id)},
            )

    @staticmethod
    def record_entry(params: RecordEntryParams) -> LedgerEntry:
        """Record a single entry. See record_entries()."""
        return LedgerService.record_entries([params])[0]

    @staticmethod
    def record_entries(entries: list[RecordEntryParams]) -> list[LedgerEntry]:
        """
        Record multiple ledger entries atomically.

        All entries succeed or all fail. Entries whose idempotency_key
        already exists are returned unchanged. Entries are processed in
        order, so earlier credits fund later debits in the same batch.

        Raises:
            AccountNotFound: If any account doesn't exist
            InactiveAccount: If any account is inactive
            InsufficientBalance: If any debit account lacks funds
        """
        if not entries:
            return []

        results: list[LedgerEntry] = []

        with transaction.atomic():
            account_ids: set[uuid.UUID] = set()
            for params in entries:
                account_ids.add(params.debit_account_id)
                account_ids.add(params.credit_account_id)

            accounts = {
                acc.id: acc
                for acc in LedgerAccount.objects.filter(id__in=account_ids)
                .select_for_update()
                .order_by("id")
            }

            for account_id in account_ids:
                if account_id not in accounts:
                    raise AccountNotFound(
                        f"Account {account_id} not found",
                        details={"account_id": str(account_id)},
                    )

            for params in entries:
                debit_account = accounts[params.debit_account_id]
                credit_account = accounts[params.credit_account_id]

                # Idempotency check must precede the balance check
                existing = LedgerEntry.objects.filter(
                    idempotency_key=params.idempotency_key
                ).first()
                if existing is not None:
                    results.append(existing)
                    continue

                LedgerService._validate_account_for_debit(debit_account, params.amount)
                LedgerService._validate_account_for_credit(credit_account)

                try:
                    with transaction.atomic():
                        entry = LedgerEntry.objects.create(
                            idempotency_key=params.idempotency_key,
                            debit_account=debit_account,
                            credit_account=credit_account,
                            amount=params.amount,
                            currency=debit_account.currency,
                            entry_type=params.entry_type,
                            reference_id=params.reference_id,
                            reference_type=params.reference_type,
                            description=params.description,
                            metadata=params.metadata or {},
                            created_by=params.created_by,
                        )
                except IntegrityError:
                    entry = LedgerEntry.objects.get(
                        idempotency_key=params.idempotency_key
                    )

                results.append(entry)

        return results

    @staticmethod
    def total_credited(
        account: LedgerAccount,
        entry_type: str,
        since=None,
    ) -> int:
        """Sum of entries of one type credited to an account, optionally since a time."""
        qs = LedgerEntry.objects.filter(credit_account=account, entry_type=entry_type)
        if since is not None:
            qs = qs.filter(created_at__gte=since)
        return qs.aggregate(total=Sum("amount"))["total"] or 0


# Usage: from payments.ledger.services import ledger
ledger = LedgerService()
