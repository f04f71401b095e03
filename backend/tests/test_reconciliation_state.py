"""
Unit Tests for the Reconciliation State Manager

Tests the per-entry state machine:
- unreconciled -> reconciled_matched / reconciled_unmatched
- reconciled_* -> unreconciled (rollback)
- Idempotency by rejection
- Input validation before any I/O
- Concurrent commits (exactly one wins)
- Many-to-one policy (permissive and strict)
- Event log

Run with: pytest tests/test_reconciliation_state.py -v
"""

import asyncio
import logging
import pytest
from unittest.mock import AsyncMock

from reconciliation.errors import (
    InvalidStateError,
    NotFoundError,
    RepositoryError,
    TransactionAlreadyMatchedError,
    ValidationError,
)
from reconciliation.models import ReconciliationStatus
from reconciliation.repositories import InMemoryBankEntryRepository
from reconciliation.scoring_config import EngineConfig
from reconciliation.services.state_manager import ReconciliationStateManager


class SlowReadEntryRepository(InMemoryBankEntryRepository):
    """Yields to the event loop after every read so concurrent commits interleave."""

    async def get_by_id(self, entry_id):
        entry = await super().get_by_id(entry_id)
        await asyncio.sleep(0)
        return entry


@pytest.fixture
def manager(entry_repo, transaction_repo, engine_config):
    return ReconciliationStateManager(entry_repo, transaction_repo, engine_config)


class TestReconcileWithMatch:
    """Test committing a match."""

    @pytest.mark.asyncio
    async def test_match_sets_state(self, manager, entry_repo):
        result = await manager.reconcile_with_match("entry-1", "txn-1", actor="user-42")

        assert result.entry.status == ReconciliationStatus.RECONCILED_MATCHED
        assert result.entry.matched_transaction_id == "txn-1"
        assert result.entry.reconciled_date is not None

        stored = await entry_repo.get_by_id("entry-1")
        assert stored.status == ReconciliationStatus.RECONCILED_MATCHED
        assert stored.matched_transaction_id == "txn-1"
        assert stored.reconciled_date == result.entry.reconciled_date

    @pytest.mark.asyncio
    async def test_match_records_event(self, manager, entry_repo):
        result = await manager.reconcile_with_match("entry-1", "txn-1", actor="user-42")

        events = await entry_repo.list_events("entry-1")
        assert len(events) == 1
        assert events[0] == result.event
        assert events[0].from_status == ReconciliationStatus.UNRECONCILED
        assert events[0].to_status == ReconciliationStatus.RECONCILED_MATCHED
        assert events[0].actor == "user-42"
        assert events[0].matched_transaction_id == "txn-1"

    @pytest.mark.asyncio
    async def test_second_match_rejected(self, manager):
        await manager.reconcile_with_match("entry-1", "txn-1")

        with pytest.raises(InvalidStateError) as exc_info:
            await manager.reconcile_with_match("entry-1", "txn-2")

        assert exc_info.value.entry_id == "entry-1"
        assert exc_info.value.actual_status == "reconciled_matched"

    @pytest.mark.asyncio
    async def test_match_on_unmatched_entry_rejected(self, manager):
        with pytest.raises(InvalidStateError):
            await manager.reconcile_with_match("entry-2", "txn-3")

    @pytest.mark.asyncio
    async def test_unknown_entry(self, manager):
        with pytest.raises(NotFoundError) as exc_info:
            await manager.reconcile_with_match("missing", "txn-1")

        assert exc_info.value.resource == "Bank entry"

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, manager, entry_repo):
        with pytest.raises(NotFoundError) as exc_info:
            await manager.reconcile_with_match("entry-1", "no-such-txn")

        assert exc_info.value.resource == "Transaction"
        stored = await entry_repo.get_by_id("entry-1")
        assert stored.status == ReconciliationStatus.UNRECONCILED

    @pytest.mark.asyncio
    async def test_any_existing_transaction_may_be_chosen(self, manager):
        """The commit does not re-check the score; a far-away transaction is allowed."""
        result = await manager.reconcile_with_match("entry-1", "txn-far")

        assert result.entry.matched_transaction_id == "txn-far"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry_id, transaction_id, field", [
        ("", "txn-1", "bank_entry_id"),
        ("   ", "txn-1", "bank_entry_id"),
        (None, "txn-1", "bank_entry_id"),
        ("entry-1", "", "transaction_id"),
        ("entry-1", None, "transaction_id"),
    ])
    async def test_missing_ids_rejected_before_io(self, engine_config, entry_id, transaction_id, field):
        entries = AsyncMock()
        transactions = AsyncMock()
        manager = ReconciliationStateManager(entries, transactions, engine_config)

        with pytest.raises(ValidationError) as exc_info:
            await manager.reconcile_with_match(entry_id, transaction_id)

        assert exc_info.value.field == field
        entries.get_by_id.assert_not_called()
        transactions.get_by_id.assert_not_called()


class TestReconcileWithoutMatch:
    """Test committing a no-match."""

    @pytest.mark.asyncio
    async def test_no_match_sets_state(self, manager):
        result = await manager.reconcile_without_match("entry-1")

        assert result.entry.status == ReconciliationStatus.RECONCILED_UNMATCHED
        assert result.entry.matched_transaction_id is None
        assert result.entry.reconciled_date is not None
        assert result.event.actor == "system"

    @pytest.mark.asyncio
    async def test_no_match_twice_rejected(self, manager):
        await manager.reconcile_without_match("entry-1")

        with pytest.raises(InvalidStateError):
            await manager.reconcile_without_match("entry-1")

    @pytest.mark.asyncio
    async def test_no_match_after_match_rejected(self, manager):
        await manager.reconcile_with_match("entry-1", "txn-1")

        with pytest.raises(InvalidStateError):
            await manager.reconcile_without_match("entry-1")


class TestUnreconcile:
    """Test rollback."""

    @pytest.mark.asyncio
    async def test_rollback_after_match(self, manager, entry_repo):
        await manager.reconcile_with_match("entry-1", "txn-1")

        result = await manager.unreconcile("entry-1")

        assert result.entry.status == ReconciliationStatus.UNRECONCILED
        assert result.entry.matched_transaction_id is None
        assert result.entry.reconciled_date is None

        stored = await entry_repo.get_by_id("entry-1")
        assert stored.status == ReconciliationStatus.UNRECONCILED
        assert stored.matched_transaction_id is None
        assert stored.reconciled_date is None

    @pytest.mark.asyncio
    async def test_rollback_after_no_match(self, manager):
        result = await manager.unreconcile("entry-2")

        assert result.event.from_status == ReconciliationStatus.RECONCILED_UNMATCHED
        assert result.event.to_status == ReconciliationStatus.UNRECONCILED

    @pytest.mark.asyncio
    async def test_rollback_of_unreconciled_entry_rejected(self, manager):
        with pytest.raises(InvalidStateError) as exc_info:
            await manager.unreconcile("entry-1")

        assert exc_info.value.actual_status == "unreconciled"

    @pytest.mark.asyncio
    async def test_entry_can_be_rematched_after_rollback(self, manager, entry_repo):
        await manager.reconcile_with_match("entry-1", "txn-1")
        await manager.unreconcile("entry-1")
        await manager.reconcile_with_match("entry-1", "txn-2", actor="user-7")

        events = await entry_repo.list_events("entry-1")
        assert [e.to_status for e in events] == [
            ReconciliationStatus.RECONCILED_MATCHED,
            ReconciliationStatus.UNRECONCILED,
            ReconciliationStatus.RECONCILED_MATCHED,
        ]
        stored = await entry_repo.get_by_id("entry-1")
        assert stored.matched_transaction_id == "txn-2"


class TestConcurrency:
    """Test concurrent commits on the same entry."""

    @pytest.mark.asyncio
    async def test_concurrent_matches_exactly_one_wins(self, make_entry, accounts, transaction_repo, engine_config):
        entries = SlowReadEntryRepository([make_entry("entry-1")], accounts)
        manager = ReconciliationStateManager(entries, transaction_repo, engine_config)

        results = await asyncio.gather(
            manager.reconcile_with_match("entry-1", "txn-1", actor="alice"),
            manager.reconcile_with_match("entry-1", "txn-2", actor="bob"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidStateError)

        stored = await entries.get_by_id("entry-1")
        assert stored.matched_transaction_id == successes[0].entry.matched_transaction_id
        assert len(await entries.list_events("entry-1")) == 1

    @pytest.mark.asyncio
    async def test_conflicting_write_reported(self, manager, entry_repo):
        """A conditional write that finds a different status surfaces as InvalidStateError."""
        entry_repo.update_reconciliation_state = AsyncMock(return_value=False)

        with pytest.raises(InvalidStateError) as exc_info:
            await manager.reconcile_without_match("entry-1")

        assert exc_info.value.expected_status == "unreconciled"

    @pytest.mark.asyncio
    async def test_conflict_reported_when_reread_fails(self, manager, entry_repo):
        """The lost race is still an InvalidStateError if the follow-up read fails."""
        entry = await entry_repo.get_by_id("entry-1")
        entry_repo.update_reconciliation_state = AsyncMock(return_value=False)
        entry_repo.get_by_id = AsyncMock(side_effect=[
            entry,
            RepositoryError("connection reset"),
            RepositoryError("connection reset"),
        ])

        with pytest.raises(InvalidStateError) as exc_info:
            await manager.reconcile_without_match("entry-1")

        assert exc_info.value.expected_status == "unreconciled"
        assert exc_info.value.actual_status is None

    @pytest.mark.asyncio
    async def test_write_failure_not_retried(self, manager, entry_repo):
        entry_repo.update_reconciliation_state = AsyncMock(side_effect=RepositoryError("disk full"))

        with pytest.raises(RepositoryError):
            await manager.reconcile_with_match("entry-1", "txn-1")

        assert entry_repo.update_reconciliation_state.call_count == 1


class TestManyToOnePolicy:
    """Test matching one internal transaction to several bank entries."""

    @pytest.mark.asyncio
    async def test_permissive_by_default(self, entry_repo, transaction_repo, caplog):
        manager = ReconciliationStateManager(
            entry_repo, transaction_repo, EngineConfig(read_retry_delay_seconds=0)
        )
        await manager.reconcile_with_match("entry-1", "txn-1")

        with caplog.at_level(logging.WARNING):
            result = await manager.reconcile_with_match("entry-3", "txn-1")

        assert result.entry.matched_transaction_id == "txn-1"
        assert "already matched" in caplog.text

    @pytest.mark.asyncio
    async def test_strict_mode_rejects(self, entry_repo, transaction_repo):
        manager = ReconciliationStateManager(
            entry_repo,
            transaction_repo,
            EngineConfig(read_retry_delay_seconds=0, allow_many_to_one=False),
        )
        await manager.reconcile_with_match("entry-1", "txn-1")

        with pytest.raises(TransactionAlreadyMatchedError) as exc_info:
            await manager.reconcile_with_match("entry-3", "txn-1")

        assert exc_info.value.matched_entry_ids == ["entry-1"]
        assert isinstance(exc_info.value, InvalidStateError)
        stored = await entry_repo.get_by_id("entry-3")
        assert stored.status == ReconciliationStatus.UNRECONCILED

    @pytest.mark.asyncio
    async def test_strict_mode_allows_after_rollback(self, entry_repo, transaction_repo):
        manager = ReconciliationStateManager(
            entry_repo,
            transaction_repo,
            EngineConfig(read_retry_delay_seconds=0, allow_many_to_one=False),
        )
        await manager.reconcile_with_match("entry-1", "txn-1")
        await manager.unreconcile("entry-1")

        result = await manager.reconcile_with_match("entry-3", "txn-1")

        assert result.entry.status == ReconciliationStatus.RECONCILED_MATCHED
