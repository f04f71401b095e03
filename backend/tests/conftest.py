"""
Shared fixtures for the reconciliation tests.

Builders return domain objects with sensible defaults so each test only
spells out the fields it cares about.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from reconciliation.models import (
    BankAccount,
    BankEntry,
    InternalTransaction,
    ReconciliationStatus,
)
from reconciliation.repositories import (
    InMemoryBankEntryRepository,
    InMemoryTransactionRepository,
)
from reconciliation.scoring_config import EngineConfig


ACCOUNT_ID = "acc-main"
ENTRY_DATE = date(2025, 3, 1)


@pytest.fixture
def make_entry():
    """Factory for bank entries."""
    def _make(entry_id="entry-1", **overrides):
        fields = dict(
            id=entry_id,
            bank_account_id=ACCOUNT_ID,
            transaction_date=ENTRY_DATE,
            amount=Decimal("-1200.00"),
            description="RENT PAYMENT REF123",
            reference_number="REF123",
            category=None,
        )
        fields.update(overrides)
        return BankEntry(**fields)
    return _make


@pytest.fixture
def make_transaction():
    """Factory for internal transactions."""
    def _make(transaction_id="txn-1", **overrides):
        fields = dict(
            id=transaction_id,
            date=ENTRY_DATE,
            amount=Decimal("1200.00"),
            description="Rent payment reference REF123",
            type="rent",
        )
        fields.update(overrides)
        return InternalTransaction(**fields)
    return _make


@pytest.fixture
def engine_config():
    """Engine configuration with no retry backoff so failure tests stay fast."""
    return EngineConfig(read_retry_delay_seconds=0, repository_timeout_seconds=1.0)


@pytest.fixture
def accounts():
    return [
        BankAccount(id=ACCOUNT_ID, name="Main Operating", bank_name="First Bank", current_balance=Decimal("5400.00")),
        BankAccount(id="acc-savings", name="Reserve Savings", bank_name="First Bank"),
        BankAccount(id="acc-closed", name="Old Account", is_active=False),
    ]


@pytest.fixture
def entry_repo(make_entry, accounts):
    """Bank entry store with one unreconciled and one already reconciled entry."""
    return InMemoryBankEntryRepository(
        entries=[
            make_entry("entry-1"),
            make_entry(
                "entry-2",
                transaction_date=date(2025, 3, 3),
                amount=Decimal("-89.90"),
                description="CARD PURCHASE HARDWARE STORE",
                reference_number=None,
                category="maintenance",
                status=ReconciliationStatus.RECONCILED_UNMATCHED,
                reconciled_date=datetime(2025, 3, 4, 9, 30, tzinfo=timezone.utc),
            ),
            make_entry(
                "entry-3",
                bank_account_id="acc-savings",
                transaction_date=date(2025, 2, 20),
                amount=Decimal("250.00"),
                description="INTEREST CREDIT",
                reference_number="INT-0225",
            ),
        ],
        accounts=accounts,
    )


@pytest.fixture
def transaction_repo(make_transaction):
    return InMemoryTransactionRepository([
        make_transaction("txn-1"),
        make_transaction(
            "txn-2",
            date=date(2025, 3, 2),
            amount=Decimal("1200.00"),
            description="Monthly rent",
        ),
        make_transaction(
            "txn-3",
            date=date(2025, 3, 5),
            amount=Decimal("75.00"),
            description="Plumber call-out",
            type="maintenance",
        ),
        make_transaction(
            "txn-far",
            date=date(2025, 4, 15),
            amount=Decimal("1200.00"),
            description="Rent payment reference REF123",
        ),
    ])
