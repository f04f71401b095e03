"""
Reconciliation Repositories

Storage boundary for the reconciliation engine. Two families:

- TransactionRepository: read-only access to the internal ledger
- BankEntryRepository: bank entries, their reconciliation state and event log

Each has a PostgreSQL implementation (SQLAlchemy async sessions) and an
in-memory implementation used by tests and local tooling.

Conditional write contract:
    update_reconciliation_state() applies the new state only if the stored
    status still equals expected_status, and records the event in the same
    transaction. It returns False (and writes nothing) when the status had
    already changed, which is how concurrent commits are detected.
"""

from dataclasses import replace
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import (
    BankAccountDB,
    BankEntryDB,
    InternalTransactionDB,
    ReconciliationEventDB,
)
from reconciliation.errors import RepositoryError
from reconciliation.models import (
    BankAccount,
    BankEntry,
    InternalTransaction,
    ReconciliationEvent,
    ReconciliationStatus,
)

logger = logging.getLogger(__name__)


# ==================== CONVERSION HELPERS ====================

def db_to_bank_account(db_obj: BankAccountDB) -> BankAccount:
    """Convert database model to domain model"""
    return BankAccount(
        id=db_obj.id,
        name=db_obj.name,
        bank_name=db_obj.bank_name,
        current_balance=db_obj.current_balance,
        is_active=bool(db_obj.is_active),
    )


def db_to_bank_entry(db_obj: BankEntryDB, account_name: Optional[str] = None) -> BankEntry:
    """Convert database model to domain model"""
    return BankEntry(
        id=db_obj.id,
        bank_account_id=db_obj.bank_account_id,
        transaction_date=db_obj.transaction_date,
        amount=db_obj.amount,
        description=db_obj.description or "",
        balance_after=db_obj.balance_after,
        reference_number=db_obj.reference_number,
        category=db_obj.category,
        status=ReconciliationStatus(db_obj.status),
        reconciled_date=db_obj.reconciled_date,
        matched_transaction_id=db_obj.matched_transaction_id,
        created_at=db_obj.created_at,
        bank_account_name=account_name,
    )


def db_to_internal_transaction(db_obj: InternalTransactionDB) -> InternalTransaction:
    """Convert database model to domain model"""
    return InternalTransaction(
        id=db_obj.id,
        date=db_obj.date,
        amount=db_obj.amount,
        description=db_obj.description,
        type=db_obj.type,
        scenario_id=db_obj.scenario_id,
        scenario_name=db_obj.scenario_name,
    )


def db_to_event(db_obj: ReconciliationEventDB) -> ReconciliationEvent:
    """Convert database model to domain model"""
    return ReconciliationEvent(
        id=db_obj.id,
        bank_entry_id=db_obj.bank_entry_id,
        from_status=ReconciliationStatus(db_obj.from_status),
        to_status=ReconciliationStatus(db_obj.to_status),
        actor=db_obj.actor,
        occurred_at=db_obj.occurred_at,
        matched_transaction_id=db_obj.matched_transaction_id,
    )


# ==================== INTERFACES ====================

class TransactionRepository:
    """Read-only access to internal ledger transactions"""

    async def find_by_date_range(self, start: date, end: date) -> List[InternalTransaction]:
        """All transactions dated within [start, end], inclusive."""
        raise NotImplementedError

    async def get_by_id(self, transaction_id: str) -> Optional[InternalTransaction]:
        raise NotImplementedError


class BankEntryRepository:
    """Bank entries, their reconciliation state and event log"""

    async def get_by_id(self, entry_id: str) -> Optional[BankEntry]:
        raise NotImplementedError

    async def update_reconciliation_state(
        self,
        entry_id: str,
        expected_status: ReconciliationStatus,
        new_status: ReconciliationStatus,
        matched_transaction_id: Optional[str],
        reconciled_at: Optional[datetime],
        event: ReconciliationEvent,
    ) -> bool:
        """
        Conditionally move an entry to a new state and append its event.

        Returns:
            True if applied, False if the stored status was not expected_status
        """
        raise NotImplementedError

    async def find_by_matched_transaction(self, transaction_id: str) -> List[BankEntry]:
        """Entries currently matched to the given internal transaction."""
        raise NotImplementedError

    async def list_entries(
        self,
        account_id: Optional[str] = None,
        include_reconciled: bool = True,
    ) -> List[BankEntry]:
        """Entries ordered by transaction date, newest first."""
        raise NotImplementedError

    async def list_events(self, entry_id: str) -> List[ReconciliationEvent]:
        """Event log of an entry, oldest first."""
        raise NotImplementedError

    async def list_accounts(self, active_only: bool = True) -> List[BankAccount]:
        """Bank accounts ordered by name."""
        raise NotImplementedError


# ==================== POSTGRESQL ====================

class SqlTransactionRepository(TransactionRepository):
    """Repository for internal ledger transactions"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_date_range(self, start: date, end: date) -> List[InternalTransaction]:
        try:
            result = await self.session.execute(
                select(InternalTransactionDB)
                .where(InternalTransactionDB.date >= start)
                .where(InternalTransactionDB.date <= end)
                .order_by(InternalTransactionDB.date.desc(), InternalTransactionDB.id)
            )
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load transactions {start}..{end}: {e}", operation="find_by_date_range")
        return [db_to_internal_transaction(row) for row in result.scalars().all()]

    async def get_by_id(self, transaction_id: str) -> Optional[InternalTransaction]:
        try:
            result = await self.session.execute(
                select(InternalTransactionDB).where(InternalTransactionDB.id == transaction_id)
            )
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load transaction {transaction_id}: {e}", operation="get_transaction")
        db_txn = result.scalar_one_or_none()
        return db_to_internal_transaction(db_txn) if db_txn else None


class SqlBankEntryRepository(BankEntryRepository):
    """Repository for bank entries and reconciliation events"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _entry_query(self):
        return (
            select(BankEntryDB, BankAccountDB.name)
            .outerjoin(BankAccountDB, BankAccountDB.id == BankEntryDB.bank_account_id)
            .execution_options(populate_existing=True)
        )

    async def get_by_id(self, entry_id: str) -> Optional[BankEntry]:
        try:
            result = await self.session.execute(
                self._entry_query().where(BankEntryDB.id == entry_id)
            )
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load bank entry {entry_id}: {e}", operation="get_entry")
        row = result.first()
        if not row:
            return None
        db_entry, account_name = row
        return db_to_bank_entry(db_entry, account_name)

    async def update_reconciliation_state(
        self,
        entry_id: str,
        expected_status: ReconciliationStatus,
        new_status: ReconciliationStatus,
        matched_transaction_id: Optional[str],
        reconciled_at: Optional[datetime],
        event: ReconciliationEvent,
    ) -> bool:
        try:
            result = await self.session.execute(
                update(BankEntryDB)
                .where(BankEntryDB.id == entry_id)
                .where(BankEntryDB.status == expected_status)
                .values(
                    status=new_status,
                    matched_transaction_id=matched_transaction_id,
                    reconciled_date=reconciled_at,
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                await self.session.rollback()
                return False

            self.session.add(ReconciliationEventDB(
                id=event.id,
                bank_entry_id=event.bank_entry_id,
                from_status=event.from_status,
                to_status=event.to_status,
                actor=event.actor,
                matched_transaction_id=event.matched_transaction_id,
                occurred_at=event.occurred_at,
            ))
            await self.session.commit()
            return True

        except SQLAlchemyError as e:
            logger.error(f"Failed to update reconciliation state of {entry_id}: {e}")
            await self.session.rollback()
            raise RepositoryError(
                f"Failed to update bank entry {entry_id}: {e}",
                operation="update_reconciliation_state"
            )

    async def find_by_matched_transaction(self, transaction_id: str) -> List[BankEntry]:
        try:
            result = await self.session.execute(
                self._entry_query()
                .where(BankEntryDB.matched_transaction_id == transaction_id)
                .where(BankEntryDB.status == ReconciliationStatus.RECONCILED_MATCHED)
                .order_by(BankEntryDB.id)
            )
        except SQLAlchemyError as e:
            raise RepositoryError(
                f"Failed to load entries matched to {transaction_id}: {e}",
                operation="find_by_matched_transaction"
            )
        return [db_to_bank_entry(db_entry, name) for db_entry, name in result.all()]

    async def list_entries(
        self,
        account_id: Optional[str] = None,
        include_reconciled: bool = True,
    ) -> List[BankEntry]:
        query = self._entry_query()
        if account_id:
            query = query.where(BankEntryDB.bank_account_id == account_id)
        if not include_reconciled:
            query = query.where(BankEntryDB.status == ReconciliationStatus.UNRECONCILED)
        query = query.order_by(BankEntryDB.transaction_date.desc(), BankEntryDB.id)

        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to list bank entries: {e}", operation="list_entries")
        return [db_to_bank_entry(db_entry, name) for db_entry, name in result.all()]

    async def list_events(self, entry_id: str) -> List[ReconciliationEvent]:
        try:
            result = await self.session.execute(
                select(ReconciliationEventDB)
                .where(ReconciliationEventDB.bank_entry_id == entry_id)
                .order_by(ReconciliationEventDB.occurred_at, ReconciliationEventDB.id)
            )
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load events of {entry_id}: {e}", operation="list_events")
        return [db_to_event(row) for row in result.scalars().all()]

    async def list_accounts(self, active_only: bool = True) -> List[BankAccount]:
        query = select(BankAccountDB)
        if active_only:
            query = query.where(BankAccountDB.is_active.is_(True))
        query = query.order_by(BankAccountDB.name)

        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to list bank accounts: {e}", operation="list_accounts")
        return [db_to_bank_account(row) for row in result.scalars().all()]


# ==================== IN-MEMORY ====================

class InMemoryTransactionRepository(TransactionRepository):
    """Internal ledger held in a dict"""

    def __init__(self, transactions: Optional[Iterable[InternalTransaction]] = None):
        self._transactions: Dict[str, InternalTransaction] = {
            t.id: t for t in (transactions or [])
        }

    async def find_by_date_range(self, start: date, end: date) -> List[InternalTransaction]:
        found = [t for t in self._transactions.values() if start <= t.date <= end]
        return sorted(found, key=lambda t: t.id)

    async def get_by_id(self, transaction_id: str) -> Optional[InternalTransaction]:
        return self._transactions.get(transaction_id)


class InMemoryBankEntryRepository(BankEntryRepository):
    """
    Bank entries held in a dict.

    Callers always receive copies; the stored entry only changes through
    update_reconciliation_state(), whose check-and-set has no await in it.
    """

    def __init__(
        self,
        entries: Optional[Iterable[BankEntry]] = None,
        accounts: Optional[Iterable[BankAccount]] = None,
    ):
        self._entries: Dict[str, BankEntry] = {e.id: replace(e) for e in (entries or [])}
        self._accounts: Dict[str, BankAccount] = {a.id: a for a in (accounts or [])}
        self._events: List[ReconciliationEvent] = []

    def _copy(self, entry: BankEntry) -> BankEntry:
        account = self._accounts.get(entry.bank_account_id)
        return replace(entry, bank_account_name=account.name if account else entry.bank_account_name)

    async def get_by_id(self, entry_id: str) -> Optional[BankEntry]:
        entry = self._entries.get(entry_id)
        return self._copy(entry) if entry else None

    async def update_reconciliation_state(
        self,
        entry_id: str,
        expected_status: ReconciliationStatus,
        new_status: ReconciliationStatus,
        matched_transaction_id: Optional[str],
        reconciled_at: Optional[datetime],
        event: ReconciliationEvent,
    ) -> bool:
        entry = self._entries.get(entry_id)
        if entry is None or entry.status != expected_status:
            return False

        self._entries[entry_id] = replace(
            entry,
            status=new_status,
            matched_transaction_id=matched_transaction_id,
            reconciled_date=reconciled_at,
        )
        self._events.append(event)
        return True

    async def find_by_matched_transaction(self, transaction_id: str) -> List[BankEntry]:
        return [
            self._copy(e) for e in sorted(self._entries.values(), key=lambda e: e.id)
            if e.status == ReconciliationStatus.RECONCILED_MATCHED
            and e.matched_transaction_id == transaction_id
        ]

    async def list_entries(
        self,
        account_id: Optional[str] = None,
        include_reconciled: bool = True,
    ) -> List[BankEntry]:
        entries = [
            e for e in self._entries.values()
            if (not account_id or e.bank_account_id == account_id)
            and (include_reconciled or not e.is_reconciled)
        ]
        entries.sort(key=lambda e: e.id)
        entries.sort(key=lambda e: e.transaction_date, reverse=True)
        return [self._copy(e) for e in entries]

    async def list_events(self, entry_id: str) -> List[ReconciliationEvent]:
        return [e for e in self._events if e.bank_entry_id == entry_id]

    async def list_accounts(self, active_only: bool = True) -> List[BankAccount]:
        accounts = [a for a in self._accounts.values() if a.is_active or not active_only]
        return sorted(accounts, key=lambda a: a.name)
