"""
Reconciliation Engine Errors

Error taxonomy surfaced by the Candidate Finder and State Manager:
- ValidationError: malformed input, rejected before any I/O
- NotFoundError: unknown bank entry or internal transaction
- InvalidStateError: transition not permitted from the current state (including lost races)
- RepositoryError: backing store read/write failed or timed out

The Scorer and Ranker never raise these; they work on validated in-memory data.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors"""
    pass


class ValidationError(ReconciliationError):
    """Raised when input is malformed (missing id, missing date, non-numeric amount)"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(ReconciliationError):
    """Raised when a referenced bank entry or internal transaction does not exist"""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class InvalidStateError(ReconciliationError):
    """
    Raised when a transition is attempted from a state that does not permit it.

    Also raised for the loser of a concurrent commit: the conditional write
    found the row in a different status than the one it was read in.
    """

    def __init__(
        self,
        message: str,
        entry_id: Optional[str] = None,
        expected_status: Optional[str] = None,
        actual_status: Optional[str] = None,
    ):
        super().__init__(message)
        self.entry_id = entry_id
        self.expected_status = expected_status
        self.actual_status = actual_status


class TransactionAlreadyMatchedError(InvalidStateError):
    """Raised in strict one-to-one mode when the transaction is matched to another entry"""

    def __init__(self, transaction_id: str, matched_entry_ids: list):
        super().__init__(
            f"Transaction {transaction_id} is already matched to bank entry "
            f"{', '.join(matched_entry_ids)}"
        )
        self.transaction_id = transaction_id
        self.matched_entry_ids = matched_entry_ids


class RepositoryError(ReconciliationError):
    """Raised when the backing store read or write failed"""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
