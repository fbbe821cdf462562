"""
Ledger models for double-entry bookkeeping.

Every movement of escrowed money is mirrored here:
- LedgerAccount: Holds monetary value (helper balances, escrow, revenue)
- LedgerEntry: Records a movement between two accounts

Money flow for one paid request:
    capture   EXTERNAL_GATEWAY -> PLATFORM_ESCROW    (PAYMENT_HELD)
    release   PLATFORM_ESCROW  -> HELPER_BALANCE     (PAYMENT_RELEASED)
              PLATFORM_ESCROW  -> PLATFORM_REVENUE   (FEE_COLLECTED)
    refund    PLATFORM_ESCROW  -> EXTERNAL_GATEWAY   (REFUND)
    payout    HELPER_BALANCE   -> EXTERNAL_GATEWAY   (WITHDRAWAL)

Usage:
    from payments.ledger.models import LedgerAccount, AccountType

    escrow = LedgerAccount.objects.get(type=AccountType.PLATFORM_ESCROW, currency="inr")
    escrow.get_balance()  # minor units
"""

from __future__ import annotations

from django.db import models
from django.db.models import Case, Q, Sum, Value, When
from django.db.models.functions import Coalesce

from core.model_mixins import UUIDPrimaryKeyMixin


class AccountType(models.TextChoices):
    """
    Types of ledger accounts.

    Values:
        HELPER_BALANCE: A helper's earned, withdrawable balance
        PLATFORM_ESCROW: Money held while a request is in flight
        PLATFORM_REVENUE: Platform fees collected on release
        EXTERNAL_GATEWAY: Money in/out of the payment gateways
    """

    HELPER_BALANCE = "helper_balance", "Helper Balance"
    PLATFORM_ESCROW = "platform_escrow", "Platform Escrow"
    PLATFORM_REVENUE = "platform_revenue", "Platform Revenue"
    EXTERNAL_GATEWAY = "external_gateway", "External Gateway"


class EntryType(models.TextChoices):
    """Types of ledger entries."""

    PAYMENT_HELD = "payment_held", "Payment Held"
    PAYMENT_RELEASED = "payment_released", "Payment Released"
    FEE_COLLECTED = "fee_collected", "Fee Collected"
    REFUND = "refund", "Refund"
    WITHDRAWAL = "withdrawal", "Withdrawal"
    ADJUSTMENT = "adjustment", "Adjustment"


class LedgerAccount(UUIDPrimaryKeyMixin, models.Model):
    """
    A ledger account that holds monetary value.

    The balance is never stored; it is the sum of credits minus debits
    over the account's entries.

    Fields:
        type: Account category
        owner_id: Owning entity id as text ("" for platform accounts)
        currency: ISO 4217 currency code
        allow_negative: Whether balance can go negative (external accounts)
        is_active: Inactive accounts reject new entries

    Constraints:
        - Unique combination of (type, owner_id, currency)
    """

    type = models.CharField(
        max_length=50,
        choices=AccountType.choices,
        help_text="Category of this account",
    )
    owner_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        db_index=True,
        help_text="Id of the owning entity (e.g., helper user id); blank for platform accounts",
    )
    currency = models.CharField(
        max_length=3,
        default="inr",
        help_text="ISO 4217 currency code",
    )
    allow_negative = models.BooleanField(
        default=False,
        help_text="Whether this account can have a negative balance",
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether this account is active",
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this account was created",
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["type", "owner_id", "currency"],
                name="unique_account_per_owner",
            )
        ]
        indexes = [
            models.Index(fields=["type", "currency"], name="ledger_account_type_idx"),
        ]

    def __str__(self) -> str:
        if self.owner_id:
            return f"{self.get_type_display()} ({self.owner_id})"
        return self.get_type_display()

    def get_balance(self) -> int:
        """
        Compute current balance from entries.

        Returns:
            Credits minus debits in minor units
        """
        result = LedgerEntry.objects.filter(
            Q(credit_account=self) | Q(debit_account=self)
        ).aggregate(
            credits=Coalesce(
                Sum(
                    Case(
                        When(credit_account=self, then="amount"),
                        default=Value(0),
                        output_field=models.BigIntegerField(),
                    )
                ),
                Value(0),
                output_field=models.BigIntegerField(),
            ),
            debits=Coalesce(
                Sum(
                    Case(
                        When(debit_account=self, then="amount"),
                        default=Value(0),
                        output_field=models.BigIntegerField(),
                    )
                ),
                Value(0),
                output_field=models.BigIntegerField(),
            ),
        )
        return result["credits"] - result["debits"]


class LedgerEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    An immutable movement of money between two accounts.

    Corrections are new ADJUSTMENT entries, never edits.

    Constraints:
        - amount must be positive
        - idempotency_key must be unique
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this entry was recorded",
    )
    debit_account = models.ForeignKey(
        LedgerAccount,
        on_delete=models.PROTECT,
        related_name="debits",
        help_text="Account money is taken from",
    )
    credit_account = models.ForeignKey(
        LedgerAccount,
        on_delete=models.PROTECT,
        related_name="credits",
        help_text="Account money is added to",
    )
    amount = models.PositiveBigIntegerField(
        help_text="Amount in minor units (always positive)",
    )
    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code",
    )
    entry_type = models.CharField(
        max_length=50,
        choices=EntryType.choices,
        db_index=True,
        help_text="Category of this entry",
    )
    reference_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="UUID of related business entity",
    )
    reference_type = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        help_text="Type of related entity (e.g., 'payment')",
    )
    description = models.TextField(
        null=True,
        blank=True,
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
    )
    created_by = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Service or user that created this entry",
    )
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique key to prevent duplicate entries",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "ledger entries"
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="ledger_entry_amount_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["reference_type", "reference_id"], name="ledger_entry_reference_idx"),
            models.Index(fields=["entry_type", "created_at"], name="ledger_entry_type_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.get_entry_type_display()}: {self.amount} {self.currency.upper()}"
