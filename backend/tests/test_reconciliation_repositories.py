"""
Unit Tests for the PostgreSQL Reconciliation Repositories

The AsyncSession is mocked; these tests check row conversion, the
conditional-write contract, the compiled UPDATE and error wrapping.

Run with: pytest tests/test_reconciliation_repositories.py -v
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from database.reconciliation_models import (
    BankAccountDB,
    BankEntryDB,
    InternalTransactionDB,
    ReconciliationEventDB,
)
from reconciliation.errors import RepositoryError
from reconciliation.models import ReconciliationEvent, ReconciliationStatus
from reconciliation.repositories import (
    SqlBankEntryRepository,
    SqlTransactionRepository,
    db_to_bank_entry,
)


def make_entry_row(**overrides):
    fields = dict(
        id="entry-1",
        bank_account_id="acc-main",
        transaction_date=date(2025, 3, 1),
        description="RENT PAYMENT REF123",
        amount=Decimal("-1200.00"),
        balance_after=Decimal("4200.00"),
        reference_number="REF123",
        category=None,
        status=ReconciliationStatus.UNRECONCILED,
        reconciled_date=None,
        matched_transaction_id=None,
        created_at=datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return BankEntryDB(**fields)


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.execute = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def event():
    return ReconciliationEvent(
        bank_entry_id="entry-1",
        from_status=ReconciliationStatus.UNRECONCILED,
        to_status=ReconciliationStatus.RECONCILED_MATCHED,
        actor="user-42",
        occurred_at=datetime(2025, 3, 2, 10, 0, tzinfo=timezone.utc),
        matched_transaction_id="txn-1",
    )


class TestSqlTransactionRepository:
    """Test internal ledger reads."""

    @pytest.mark.asyncio
    async def test_find_by_date_range_converts_rows(self, mock_db):
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = [
            InternalTransactionDB(
                id="txn-1",
                date=date(2025, 3, 1),
                amount=Decimal("1200.00"),
                description="Rent payment reference REF123",
                type="rent",
                scenario_id="scn-1",
                scenario_name="Harbour Street",
            )
        ]
        mock_db.execute.return_value = mock_result
        repo = SqlTransactionRepository(mock_db)

        transactions = await repo.find_by_date_range(date(2025, 2, 22), date(2025, 3, 8))

        assert len(transactions) == 1
        assert transactions[0].id == "txn-1"
        assert transactions[0].amount == Decimal("1200.00")
        assert transactions[0].scenario_name == "Harbour Street"

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, mock_db):
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = mock_result

        assert await SqlTransactionRepository(mock_db).get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_database_error_wrapped(self, mock_db):
        mock_db.execute.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

        with pytest.raises(RepositoryError) as exc_info:
            await SqlTransactionRepository(mock_db).find_by_date_range(date(2025, 3, 1), date(2025, 3, 2))

        assert exc_info.value.operation == "find_by_date_range"


class TestSqlBankEntryRepository:
    """Test bank entry reads and the conditional state write."""

    @pytest.mark.asyncio
    async def test_get_by_id_joins_account_name(self, mock_db):
        mock_result = MagicMock()
        mock_result.first.return_value = (make_entry_row(), "Main Operating")
        mock_db.execute.return_value = mock_result

        entry = await SqlBankEntryRepository(mock_db).get_by_id("entry-1")

        assert entry.id == "entry-1"
        assert entry.bank_account_name == "Main Operating"
        assert entry.status == ReconciliationStatus.UNRECONCILED
        assert entry.amount == Decimal("-1200.00")

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, mock_db):
        mock_result = MagicMock()
        mock_result.first.return_value = None
        mock_db.execute.return_value = mock_result

        assert await SqlBankEntryRepository(mock_db).get_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_update_applied_writes_event_and_commits(self, mock_db, event):
        mock_db.execute.return_value = MagicMock(rowcount=1)
        repo = SqlBankEntryRepository(mock_db)

        applied = await repo.update_reconciliation_state(
            "entry-1",
            ReconciliationStatus.UNRECONCILED,
            ReconciliationStatus.RECONCILED_MATCHED,
            "txn-1",
            event.occurred_at,
            event,
        )

        assert applied is True
        mock_db.add.assert_called_once()
        added = mock_db.add.call_args[0][0]
        assert isinstance(added, ReconciliationEventDB)
        assert added.id == event.id
        assert added.matched_transaction_id == "txn-1"
        mock_db.commit.assert_awaited_once()
        mock_db.rollback.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_is_conditional_on_expected_status(self, mock_db, event):
        mock_db.execute.return_value = MagicMock(rowcount=1)
        repo = SqlBankEntryRepository(mock_db)

        await repo.update_reconciliation_state(
            "entry-1",
            ReconciliationStatus.UNRECONCILED,
            ReconciliationStatus.RECONCILED_MATCHED,
            "txn-1",
            event.occurred_at,
            event,
        )

        statement = mock_db.execute.call_args[0][0]
        compiled = statement.compile(dialect=postgresql.dialect())
        sql = str(compiled)
        where_clause = sql.split("WHERE", 1)[1]

        assert sql.startswith("UPDATE bank_transactions SET")
        assert "bank_transactions.id" in where_clause
        assert "bank_transactions.status" in where_clause
        assert "entry-1" in compiled.params.values()
        assert ReconciliationStatus.UNRECONCILED in compiled.params.values()

    @pytest.mark.asyncio
    async def test_update_conflict_writes_nothing(self, mock_db, event):
        mock_db.execute.return_value = MagicMock(rowcount=0)
        repo = SqlBankEntryRepository(mock_db)

        applied = await repo.update_reconciliation_state(
            "entry-1",
            ReconciliationStatus.UNRECONCILED,
            ReconciliationStatus.RECONCILED_MATCHED,
            "txn-1",
            event.occurred_at,
            event,
        )

        assert applied is False
        mock_db.add.assert_not_called()
        mock_db.commit.assert_not_called()
        mock_db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_database_error_rolls_back(self, mock_db, event):
        mock_db.execute.return_value = MagicMock(rowcount=1)
        mock_db.commit.side_effect = OperationalError("COMMIT", {}, Exception("server closed the connection"))
        repo = SqlBankEntryRepository(mock_db)

        with pytest.raises(RepositoryError) as exc_info:
            await repo.update_reconciliation_state(
                "entry-1",
                ReconciliationStatus.UNRECONCILED,
                ReconciliationStatus.RECONCILED_MATCHED,
                "txn-1",
                event.occurred_at,
                event,
            )

        assert exc_info.value.operation == "update_reconciliation_state"
        mock_db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_list_accounts(self, mock_db):
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = [
            BankAccountDB(id="acc-main", name="Main Operating", bank_name="First Bank",
                          current_balance=Decimal("5400.00"), is_active=True),
        ]
        mock_db.execute.return_value = mock_result

        accounts = await SqlBankEntryRepository(mock_db).list_accounts()

        assert [a.name for a in accounts] == ["Main Operating"]
        assert accounts[0].current_balance == Decimal("5400.00")

    @pytest.mark.asyncio
    async def test_list_events_converts_statuses(self, mock_db):
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = [
            ReconciliationEventDB(
                id="evt-1",
                bank_entry_id="entry-1",
                from_status="unreconciled",
                to_status="reconciled_unmatched",
                actor="system",
                matched_transaction_id=None,
                occurred_at=datetime(2025, 3, 2, tzinfo=timezone.utc),
            )
        ]
        mock_db.execute.return_value = mock_result

        events = await SqlBankEntryRepository(mock_db).list_events("entry-1")

        assert events[0].to_status == ReconciliationStatus.RECONCILED_UNMATCHED


class TestRowConversion:
    """Test ORM row to domain conversion."""

    def test_reconciled_row(self):
        row = make_entry_row(
            status=ReconciliationStatus.RECONCILED_MATCHED,
            matched_transaction_id="txn-1",
            reconciled_date=datetime(2025, 3, 2, tzinfo=timezone.utc),
            description=None,
        )

        entry = db_to_bank_entry(row)

        assert entry.is_reconciled is True
        assert entry.matched_transaction_id == "txn-1"
        assert entry.description == ""
        assert entry.bank_account_name is None
