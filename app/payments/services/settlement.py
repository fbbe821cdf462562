"""
Settlement calculator and dashboards.

The platform/helper split is derived, never stored:

    helper_share = floor(amount * (100 - PLATFORM_FEE_PERCENT) / 100)
    platform_fee = amount - helper_share

The fee is the remainder, so the two parts always sum to ``amount``.
For 499 at 10%: helper_share=449, platform_fee=50.

Dashboards read Payments for pending/held figures and the ledger for
released and withdrawn money, so a withdrawal written straight to the
ledger shows up without touching Payment rows.

Usage:
    from payments.services.settlement import SettlementService, split

    split(49900)                              # Split(helper_share=44910, platform_fee=4990)
    SettlementService.helper_earnings(helper) # pending / released / withdrawn / withdrawable
    SettlementService.admin_summary()
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db.models import Count, Q, Sum

from core.exceptions import PermissionDeniedError, ValidationError
from core.services import BaseService

from payments.exceptions import InvalidAmountError
from payments.ledger.models import AccountType, EntryType, LedgerEntry
from payments.ledger.services import ledger
from payments.ledger.types import RecordEntryParams
from payments.models import Payment
from payments.state_machines import EscrowState, TrustLevel

if TYPE_CHECKING:
    from authentication.models import User


@dataclass(frozen=True)
class Split:
    helper_share: int
    platform_fee: int

    @property
    def amount(self) -> int:
        return self.helper_share + self.platform_fee


def fee_percent() -> int:
    return getattr(settings, "PLATFORM_FEE_PERCENT", 10)


def split(amount: int, percent: int | None = None) -> Split:
    """
    Split ``amount`` into helper share and platform fee.

    Raises:
        InvalidAmountError: amount is not a positive integer
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(
            "Amount must be a positive integer in minor units",
            details={"amount": amount},
        )
    percent = fee_percent() if percent is None else percent
    helper_share = amount * (100 - percent) // 100
    return Split(helper_share=helper_share, platform_fee=amount - helper_share)


@dataclass
class HelperEarnings:
    pending: int
    released: int
    withdrawn: int
    withdrawable: int
    currency: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RequesterSpend:
    held: int
    released: int
    refunded: int
    currency: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SettlementService(BaseService):
    @staticmethod
    def _currency() -> str:
        return getattr(settings, "ESCROW_CURRENCY", "inr")

    @classmethod
    def helper_earnings(cls, helper: User) -> HelperEarnings:
        """
        Earnings for one helper.

        pending: helper share of payments still held on their requests
        released: helper share credited by releases (ledger)
        withdrawn: withdrawals debited from their balance (ledger)
        withdrawable: current helper_balance account balance
        """
        currency = cls._currency()
        held_amounts = Payment.objects.filter(
            request__helper=helper,
            escrow_state=EscrowState.HELD,
            currency=currency,
        ).values_list("amount", flat=True)
        pending = sum(split(amount).helper_share for amount in held_amounts)

        account = ledger.get_account_by_owner(
            AccountType.HELPER_BALANCE, owner_id=str(helper.pk), currency=currency
        )
        if account is None:
            return HelperEarnings(
                pending=pending, released=0, withdrawn=0, withdrawable=0, currency=currency
            )

        released = ledger.total_credited(account, EntryType.PAYMENT_RELEASED)
        withdrawn = (
            LedgerEntry.objects.filter(
                debit_account=account, entry_type=EntryType.WITHDRAWAL
            ).aggregate(total=Sum("amount"))["total"]
            or 0
        )
        return HelperEarnings(
            pending=pending,
            released=released,
            withdrawn=withdrawn,
            withdrawable=account.get_balance(),
            currency=currency,
        )

    @classmethod
    def requester_spend(cls, requester: User) -> RequesterSpend:
        currency = cls._currency()
        totals = Payment.objects.filter(payer=requester, currency=currency).aggregate(
            held=Sum("amount", filter=Q(escrow_state=EscrowState.HELD)),
            released=Sum("amount", filter=Q(escrow_state=EscrowState.RELEASED)),
            refunded=Sum("amount", filter=Q(escrow_state=EscrowState.REFUNDED)),
        )
        return RequesterSpend(
            held=totals["held"] or 0,
            released=totals["released"] or 0,
            refunded=totals["refunded"] or 0,
            currency=currency,
        )

    @classmethod
    def admin_summary(cls) -> dict[str, Any]:
        """Counts and totals per escrow state, fees, open disputes, low-trust holds."""
        from service_requests.models import DisputeFlag

        currency = cls._currency()
        by_state = {
            row["escrow_state"]: {"count": row["count"], "total": row["total"] or 0}
            for row in Payment.objects.filter(currency=currency)
            .values("escrow_state")
            .annotate(count=Count("id"), total=Sum("amount"))
            .order_by()
        }
        for state in EscrowState.values:
            by_state.setdefault(state, {"count": 0, "total": 0})

        revenue = ledger.get_account_by_owner(
            AccountType.PLATFORM_REVENUE, owner_id="", currency=currency
        )
        escrow = ledger.get_account_by_owner(
            AccountType.PLATFORM_ESCROW, owner_id="", currency=currency
        )

        return {
            "currency": currency,
            "fee_percent": fee_percent(),
            "payments": by_state,
            "fees_collected": revenue.get_balance() if revenue else 0,
            "escrow_balance": escrow.get_balance() if escrow else 0,
            "open_disputes": DisputeFlag.objects.filter(resolved=False).count(),
            "low_trust_held": Payment.objects.filter(
                escrow_state=EscrowState.HELD,
                trust_level=TrustLevel.LOW,
            ).count(),
        }

    @classmethod
    def record_withdrawal(
        cls,
        helper: User,
        amount: int,
        actor: User,
        reference: str,
    ) -> LedgerEntry:
        """
        Record money paid out to a helper outside the platform.

        The payout itself happens elsewhere (bank transfer by ops); this
        only moves the amount from helper_balance to external_gateway.
        ``reference`` is the payout reference and doubles as the
        idempotency key, so recording the same payout twice is a no-op.

        Raises:
            PermissionDeniedError: actor is not an admin
            ValidationError: helper is not a helper, or reference is blank
            InvalidAmountError: amount is not a positive integer
            InsufficientBalance: amount exceeds the withdrawable balance
        """
        from authentication.models import User as UserModel

        if actor.role != UserModel.Role.ADMIN:
            raise PermissionDeniedError("Only platform administrators may record withdrawals")
        if helper.role != UserModel.Role.HELPER:
            raise ValidationError("Withdrawals are recorded for helpers only", error_code="NOT_A_HELPER")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError(
                "Amount must be a positive integer in minor units",
                details={"amount": amount},
            )
        cls.validate_required(reference=reference)

        currency = cls._currency()
        entry = ledger.record_entry(
            RecordEntryParams(
                debit_account_id=ledger.helper_account(helper.pk, currency).id,
                credit_account_id=ledger.platform_account(AccountType.EXTERNAL_GATEWAY, currency).id,
                amount=amount,
                entry_type=EntryType.WITHDRAWAL,
                idempotency_key=f"withdrawal:{reference}",
                reference_type="withdrawal",
                description=f"Withdrawal {reference}",
                metadata={"helper_id": str(helper.pk), "recorded_by": str(actor.pk)},
                created_by=str(actor.pk),
            )
        )
        cls.get_logger().info(
            "Helper withdrawal recorded",
            extra={
                "helper_id": str(helper.pk),
                "actor_id": str(actor.pk),
                "amount": amount,
                "reference": reference,
            },
        )
        return entry
