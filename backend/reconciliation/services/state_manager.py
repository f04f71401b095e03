"""
Reconciliation State Manager

Owns the per-entry reconciliation state machine:

    unreconciled --reconcile_with_match----> reconciled_matched
    unreconciled --reconcile_without_match-> reconciled_unmatched
    reconciled_* --unreconcile-------------> unreconciled

Every transition is a conditional write on the entry's current status plus
an event-log insert, committed together by the repository. A write that
finds the status already changed means another request won the race and
surfaces as InvalidStateError.
"""

from dataclasses import replace
from typing import Any, Optional
import logging

from reconciliation.errors import (
    InvalidStateError,
    NotFoundError,
    RepositoryError,
    TransactionAlreadyMatchedError,
    ValidationError,
)
from reconciliation.models import (
    BankEntry,
    ReconciliationEvent,
    ReconciliationResult,
    ReconciliationStatus,
    utc_now,
)
from reconciliation.repositories import BankEntryRepository, TransactionRepository
from reconciliation.repository_calls import call_read, call_write
from reconciliation.scoring_config import EngineConfig

logger = logging.getLogger(__name__)


def require_id(value: Any, field_name: str) -> str:
    """
    Reject a missing or blank identifier before any I/O.

    Raises:
        ValidationError: if the value is not a non-empty string
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", field=field_name)
    return value.strip()


class ReconciliationStateManager:
    """Commits reconciliation transitions for bank entries."""

    def __init__(
        self,
        entries: BankEntryRepository,
        transactions: TransactionRepository,
        config: Optional[EngineConfig] = None,
    ):
        self.entries = entries
        self.transactions = transactions
        self.config = config or EngineConfig()

    async def _read(self, operation, description: str):
        return await call_read(
            operation,
            description,
            timeout=self.config.repository_timeout_seconds,
            retry_delay=self.config.read_retry_delay_seconds,
        )

    async def load_entry(self, entry_id: str) -> BankEntry:
        """
        Load a bank entry or fail.

        Raises:
            ValidationError, NotFoundError, RepositoryError
        """
        entry_id = require_id(entry_id, "bank_entry_id")
        entry = await self._read(lambda: self.entries.get_by_id(entry_id), f"get_entry({entry_id})")
        if entry is None:
            raise NotFoundError("Bank entry", entry_id)
        return entry

    async def reconcile_with_match(
        self,
        entry_id: str,
        transaction_id: str,
        actor: str = "system",
    ) -> ReconciliationResult:
        """
        Link an unreconciled entry to an internal transaction.

        The transaction's score is not re-checked; any existing transaction
        may be chosen by the user.

        Raises:
            ValidationError: missing entry or transaction id
            NotFoundError: unknown entry or transaction
            InvalidStateError: entry already reconciled (or lost a concurrent commit)
            TransactionAlreadyMatchedError: strict mode and transaction already matched
            RepositoryError: store failure
        """
        entry_id = require_id(entry_id, "bank_entry_id")
        transaction_id = require_id(transaction_id, "transaction_id")

        entry = await self.load_entry(entry_id)
        self._require_unreconciled(entry)

        transaction = await self._read(
            lambda: self.transactions.get_by_id(transaction_id),
            f"get_transaction({transaction_id})"
        )
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)

        await self._check_many_to_one(entry_id, transaction_id)

        return await self._transition(
            entry,
            ReconciliationStatus.RECONCILED_MATCHED,
            matched_transaction_id=transaction_id,
            actor=actor,
        )

    async def reconcile_without_match(
        self,
        entry_id: str,
        actor: str = "system",
    ) -> ReconciliationResult:
        """
        Mark an unreconciled entry as reconciled with no internal counterpart.

        Raises:
            ValidationError, NotFoundError, InvalidStateError, RepositoryError
        """
        entry = await self.load_entry(entry_id)
        self._require_unreconciled(entry)

        return await self._transition(
            entry,
            ReconciliationStatus.RECONCILED_UNMATCHED,
            matched_transaction_id=None,
            actor=actor,
        )

    async def unreconcile(
        self,
        entry_id: str,
        actor: str = "system",
    ) -> ReconciliationResult:
        """
        Return a reconciled entry to unreconciled, clearing the match and timestamp.

        Raises:
            ValidationError, NotFoundError, RepositoryError
            InvalidStateError: entry is already unreconciled
        """
        entry = await self.load_entry(entry_id)
        if not entry.is_reconciled:
            raise InvalidStateError(
                f"Bank entry {entry.id} is not reconciled; nothing to roll back",
                entry_id=entry.id,
                expected_status="reconciled",
                actual_status=entry.status.value,
            )

        return await self._transition(
            entry,
            ReconciliationStatus.UNRECONCILED,
            matched_transaction_id=None,
            actor=actor,
        )

    # ==================== HELPERS ====================

    def _require_unreconciled(self, entry: BankEntry):
        if entry.is_reconciled:
            raise InvalidStateError(
                f"Bank entry {entry.id} is already reconciled ({entry.status.value})",
                entry_id=entry.id,
                expected_status=ReconciliationStatus.UNRECONCILED.value,
                actual_status=entry.status.value,
            )

    async def _check_many_to_one(self, entry_id: str, transaction_id: str):
        matched = await self._read(
            lambda: self.entries.find_by_matched_transaction(transaction_id),
            f"find_by_matched_transaction({transaction_id})"
        )
        others = [e.id for e in matched if e.id != entry_id]
        if not others:
            return

        if not self.config.allow_many_to_one:
            raise TransactionAlreadyMatchedError(transaction_id, others)

        logger.warning(
            f"Transaction {transaction_id} is already matched to bank entries {others}; "
            f"matching it to {entry_id} as well"
        )

    async def _transition(
        self,
        entry: BankEntry,
        new_status: ReconciliationStatus,
        matched_transaction_id: Optional[str],
        actor: str,
    ) -> ReconciliationResult:
        now = utc_now()
        reconciled_at = now if new_status.is_reconciled else None

        event = ReconciliationEvent(
            bank_entry_id=entry.id,
            from_status=entry.status,
            to_status=new_status,
            actor=actor or "system",
            occurred_at=now,
            matched_transaction_id=matched_transaction_id,
        )

        applied = await call_write(
            lambda: self.entries.update_reconciliation_state(
                entry.id,
                entry.status,
                new_status,
                matched_transaction_id,
                reconciled_at,
                event,
            ),
            f"update_reconciliation_state({entry.id})",
            timeout=self.config.repository_timeout_seconds,
        )

        if not applied:
            # The re-read only labels the conflict; its failure must not mask it
            try:
                current = await self._read(lambda: self.entries.get_by_id(entry.id), f"get_entry({entry.id})")
            except RepositoryError as e:
                logger.warning(f"Could not re-read bank entry {entry.id} after conflicting update: {e}")
                current = None
            actual = current.status.value if current else None
            logger.warning(
                f"Conflicting update on bank entry {entry.id}: "
                f"expected {entry.status.value}, found {actual}"
            )
            raise InvalidStateError(
                f"Bank entry {entry.id} was modified concurrently (now {actual})",
                entry_id=entry.id,
                expected_status=entry.status.value,
                actual_status=actual,
            )

        logger.info(
            f"Bank entry {entry.id}: {entry.status.value} -> {new_status.value} by {event.actor}"
        )

        updated = replace(
            entry,
            status=new_status,
            matched_transaction_id=matched_transaction_id,
            reconciled_date=reconciled_at,
        )
        return ReconciliationResult(entry=updated, event=event)
