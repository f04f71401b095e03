"""
Bank Reconciliation Engine Module

Matches imported bank entries against the internal transaction ledger:
- Candidate lookup within a configurable date window
- Additive confidence scoring with explained reasons
- Ranked suggestions above a minimum score
- Reconciliation state machine with conditional writes
- Append-only reconciliation event log
"""

from reconciliation.errors import (
    ReconciliationError,
    ValidationError,
    NotFoundError,
    InvalidStateError,
    TransactionAlreadyMatchedError,
    RepositoryError
)
from reconciliation.models import (
    ReconciliationStatus,
    BankAccount,
    BankEntry,
    InternalTransaction,
    MatchCandidate,
    MatchReason,
    ReconciliationEvent,
    ReconciliationResult,
    ReconciliationStats
)
from reconciliation.scoring_config import ScoringConfig, EngineConfig
from reconciliation.matching_rules import BankEntryMatchingRules, MatchRanker
from reconciliation.candidate_finder import CandidateFinder
from reconciliation.repositories import (
    TransactionRepository,
    BankEntryRepository,
    SqlTransactionRepository,
    SqlBankEntryRepository,
    InMemoryTransactionRepository,
    InMemoryBankEntryRepository
)
from reconciliation.services.state_manager import ReconciliationStateManager
from reconciliation.services.reconciliation_service import ReconciliationService
from reconciliation.endpoints.reconciliation_api import router as reconciliation_router

__all__ = [
    # Errors
    'ReconciliationError',
    'ValidationError',
    'NotFoundError',
    'InvalidStateError',
    'TransactionAlreadyMatchedError',
    'RepositoryError',
    # Models
    'ReconciliationStatus',
    'BankAccount',
    'BankEntry',
    'InternalTransaction',
    'MatchCandidate',
    'MatchReason',
    'ReconciliationEvent',
    'ReconciliationResult',
    'ReconciliationStats',
    # Configuration
    'ScoringConfig',
    'EngineConfig',
    # Matching
    'BankEntryMatchingRules',
    'MatchRanker',
    'CandidateFinder',
    # Repositories
    'TransactionRepository',
    'BankEntryRepository',
    'SqlTransactionRepository',
    'SqlBankEntryRepository',
    'InMemoryTransactionRepository',
    'InMemoryBankEntryRepository',
    # Services
    'ReconciliationStateManager',
    'ReconciliationService',
    # Router
    'reconciliation_router'
]
