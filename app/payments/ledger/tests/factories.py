"""
Factory Boy factories for ledger test data.

Usage:
    from payments.ledger.tests.factories import LedgerAccountFactory, LedgerEntryFactory

    helper_account = LedgerAccountFactory(owner_id=str(helper.pk))
    escrow = LedgerAccountFactory(type=AccountType.PLATFORM_ESCROW, owner_id="")

    entry = LedgerEntryFactory(
        debit_account=external,
        credit_account=escrow,
        amount=49900,
    )
"""

import uuid

import factory

from payments.ledger.models import AccountType, EntryType, LedgerAccount, LedgerEntry


class LedgerAccountFactory(factory.django.DjangoModelFactory):
    """Defaults to a helper balance account with a unique owner."""

    class Meta:
        model = LedgerAccount
        skip_postgeneration_save = True

    type = AccountType.HELPER_BALANCE
    owner_id = factory.Sequence(lambda n: str(10_000 + n))
    currency = "inr"
    allow_negative = False
    is_active = True


class LedgerEntryFactory(factory.django.DjangoModelFactory):
    """
    Writes an entry directly, bypassing balance checks.

    Use it to set up balances; use LedgerService to exercise the rules.
    """

    class Meta:
        model = LedgerEntry
        skip_postgeneration_save = True

    debit_account = factory.SubFactory(
        LedgerAccountFactory,
        type=AccountType.EXTERNAL_GATEWAY,
        owner_id="",
        allow_negative=True,
    )
    credit_account = factory.SubFactory(
        LedgerAccountFactory,
        type=AccountType.PLATFORM_ESCROW,
        owner_id="",
    )
    amount = 10000
    currency = "inr"
    entry_type = EntryType.PAYMENT_HELD
    idempotency_key = factory.Sequence(lambda n: f"test-entry-{n}-{uuid.uuid4()}")
    metadata = factory.LazyFunction(dict)
    created_by = "test_factory"
