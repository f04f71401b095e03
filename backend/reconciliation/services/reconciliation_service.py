"""
Reconciliation Service

Facade over the reconciliation engine used by the HTTP layer:
- Finding and ranking match candidates for a bank entry
- Committing a match, a no-match, or a rollback
- Listing/searching bank entries, accounts and statistics
- Reading an entry's reconciliation history
- Audit logging

Errors from the engine (ValidationError, NotFoundError, InvalidStateError,
RepositoryError) propagate unchanged; mapping them to responses is the
caller's job.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation.candidate_finder import CandidateFinder
from reconciliation.matching_rules import BankEntryMatchingRules, MatchRanker
from reconciliation.models import (
    BankAccount,
    BankEntry,
    MatchCandidate,
    ReconciliationEvent,
    ReconciliationResult,
    ReconciliationStats,
)
from reconciliation.repositories import (
    BankEntryRepository,
    SqlBankEntryRepository,
    SqlTransactionRepository,
    TransactionRepository,
)
from reconciliation.repository_calls import call_read
from reconciliation.scoring_config import EngineConfig
from reconciliation.services.state_manager import ReconciliationStateManager

logger = logging.getLogger(__name__)


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    CANDIDATES_FOUND = "reconciliation.candidates_found"
    MATCH_COMMITTED = "reconciliation.match_committed"
    NO_MATCH_COMMITTED = "reconciliation.no_match_committed"
    ROLLED_BACK = "reconciliation.rolled_back"


def log_reconciliation_event(
    event_type: str,
    bank_entry_id: str,
    details: Dict[str, Any],
    transaction_id: Optional[str] = None,
    actor: str = "system"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "bank_entry_id": bank_entry_id,
        "transaction_id": transaction_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)


def _amount_search_forms(amount: Decimal) -> List[str]:
    # "-1200.00" as stored and "-1200" as typed
    forms = [str(amount)]
    plain = format(amount.normalize(), "f")
    if plain not in forms:
        forms.append(plain)
    return forms


def matches_search(entry: BankEntry, term: Optional[str]) -> bool:
    """
    Case-insensitive match of a search term against an entry's description,
    reference number, account name and amount.

    An empty term matches everything.
    """
    if not term or not term.strip():
        return True

    needle = term.strip().lower()
    haystacks = [
        entry.description,
        entry.reference_number,
        entry.bank_account_name,
    ]
    if any(h and needle in h.lower() for h in haystacks):
        return True

    return any(needle in form for form in _amount_search_forms(entry.amount))


def compute_stats(entries: List[BankEntry]) -> ReconciliationStats:
    """Counts and signed amount totals over a set of entries."""
    reconciled = [e for e in entries if e.is_reconciled]
    unreconciled = [e for e in entries if not e.is_reconciled]
    timestamps = [e.reconciled_date for e in reconciled if e.reconciled_date]

    return ReconciliationStats(
        total=len(entries),
        reconciled=len(reconciled),
        unreconciled=len(unreconciled),
        total_amount=sum((e.amount for e in entries), Decimal("0")),
        unreconciled_amount=sum((e.amount for e in unreconciled), Decimal("0")),
        last_reconciled_at=max(timestamps) if timestamps else None,
    )


class ReconciliationService:
    """
    Service for reconciling bank entries against the internal ledger.

    The four engine operations are find_candidates, commit_match,
    commit_no_match and rollback. The rest are read helpers for the
    reconciliation dashboard.
    """

    def __init__(
        self,
        entries: BankEntryRepository,
        transactions: TransactionRepository,
        config: Optional[EngineConfig] = None,
    ):
        self.config = config or EngineConfig()
        self.entries = entries
        self.transactions = transactions
        self.finder = CandidateFinder(
            transactions,
            window_days=self.config.date_window_days,
            timeout=self.config.repository_timeout_seconds,
            retry_delay=self.config.read_retry_delay_seconds,
        )
        self.ranker = MatchRanker(BankEntryMatchingRules(self.config.scoring))
        self.state = ReconciliationStateManager(entries, transactions, self.config)

    @classmethod
    def from_session(cls, db: AsyncSession, config: Optional[EngineConfig] = None) -> "ReconciliationService":
        """Build a service backed by PostgreSQL repositories sharing one session."""
        return cls(
            SqlBankEntryRepository(db),
            SqlTransactionRepository(db),
            config,
        )

    async def _read(self, operation, description: str):
        return await call_read(
            operation,
            description,
            timeout=self.config.repository_timeout_seconds,
            retry_delay=self.config.read_retry_delay_seconds,
        )

    # ==================== ENGINE OPERATIONS ====================

    async def find_candidates(self, bank_entry_id: str) -> List[MatchCandidate]:
        """
        Find and rank internal transactions that may match a bank entry.

        Returns:
            Candidates at or above the minimum score, best first (possibly empty)
        """
        entry = await self.state.load_entry(bank_entry_id)
        transactions = await self.finder.find(entry)
        candidates = self.ranker.rank(entry, transactions)

        log_reconciliation_event(
            ReconciliationAuditEvent.CANDIDATES_FOUND,
            entry.id,
            {
                "window_transactions": len(transactions),
                "candidates_count": len(candidates),
                "best_score": candidates[0].score if candidates else None,
            },
            transaction_id=candidates[0].transaction.id if candidates else None,
        )

        return candidates

    async def commit_match(
        self,
        bank_entry_id: str,
        transaction_id: str,
        actor: str = "system"
    ) -> ReconciliationResult:
        """Reconcile a bank entry against the chosen internal transaction."""
        result = await self.state.reconcile_with_match(bank_entry_id, transaction_id, actor)

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_COMMITTED,
            result.entry.id,
            {"event_id": result.event.id, "from_status": result.event.from_status.value},
            transaction_id=transaction_id,
            actor=actor,
        )
        return result

    async def commit_no_match(self, bank_entry_id: str, actor: str = "system") -> ReconciliationResult:
        """Reconcile a bank entry without an internal counterpart."""
        result = await self.state.reconcile_without_match(bank_entry_id, actor)

        log_reconciliation_event(
            ReconciliationAuditEvent.NO_MATCH_COMMITTED,
            result.entry.id,
            {"event_id": result.event.id},
            actor=actor,
        )
        return result

    async def rollback(self, bank_entry_id: str, actor: str = "system") -> ReconciliationResult:
        """Undo a reconciliation, returning the entry to unreconciled."""
        result = await self.state.unreconcile(bank_entry_id, actor)

        log_reconciliation_event(
            ReconciliationAuditEvent.ROLLED_BACK,
            result.entry.id,
            {
                "event_id": result.event.id,
                "from_status": result.event.from_status.value,
            },
            actor=actor,
        )
        return result

    # ==================== READ OPERATIONS ====================

    async def get_entry(self, bank_entry_id: str) -> BankEntry:
        return await self.state.load_entry(bank_entry_id)

    async def list_entries(
        self,
        account_id: Optional[str] = None,
        include_reconciled: bool = True,
        search: Optional[str] = None,
    ) -> List[BankEntry]:
        """List bank entries newest first, optionally filtered by account, state and search term."""
        entries = await self._read(
            lambda: self.entries.list_entries(account_id, include_reconciled),
            "list_entries"
        )
        return [e for e in entries if matches_search(e, search)]

    async def get_stats(self, account_id: Optional[str] = None) -> ReconciliationStats:
        entries = await self._read(
            lambda: self.entries.list_entries(account_id, True),
            "list_entries"
        )
        return compute_stats(entries)

    async def get_history(self, bank_entry_id: str) -> List[ReconciliationEvent]:
        """Reconciliation event log of an entry, oldest first."""
        entry = await self.state.load_entry(bank_entry_id)
        return await self._read(
            lambda: self.entries.list_events(entry.id),
            f"list_events({entry.id})"
        )

    async def list_accounts(self, active_only: bool = True) -> List[BankAccount]:
        return await self._read(
            lambda: self.entries.list_accounts(active_only),
            "list_accounts"
        )
