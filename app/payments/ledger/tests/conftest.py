"""
Pytest fixtures for ledger tests.

Sections:
    - Account Fixtures: Platform accounts and a helper balance
    - Funded Fixtures: Accounts with money already in them
"""

import uuid

import pytest

from payments.ledger.models import AccountType, EntryType
from payments.ledger.services import ledger
from payments.ledger.tests.factories import LedgerAccountFactory, LedgerEntryFactory


# ==========================================================================
# Account Fixtures
# ==========================================================================


@pytest.fixture
def external_account(db):
    """Gateway side of every capture and refund; may go negative."""
    return ledger.platform_account(AccountType.EXTERNAL_GATEWAY, "inr")


@pytest.fixture
def escrow_account(db):
    return ledger.platform_account(AccountType.PLATFORM_ESCROW, "inr")


@pytest.fixture
def revenue_account(db):
    return ledger.platform_account(AccountType.PLATFORM_REVENUE, "inr")


@pytest.fixture
def helper_account(db, helper):
    return ledger.helper_account(helper.pk, "inr")


@pytest.fixture
def inactive_account(db):
    return LedgerAccountFactory(is_active=False)


# ==========================================================================
# Funded Fixtures
# ==========================================================================


@pytest.fixture
def funded_escrow_account(external_account, escrow_account):
    """Escrow holding 10000 (100.00 INR)."""
    LedgerEntryFactory(
        debit_account=external_account,
        credit_account=escrow_account,
        amount=10000,
        entry_type=EntryType.PAYMENT_HELD,
        idempotency_key=f"fund-escrow-{uuid.uuid4()}",
    )
    return escrow_account
