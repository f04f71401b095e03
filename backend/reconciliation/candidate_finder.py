"""
Candidate Finder

Fetches every internal transaction dated within +/- window_days of a bank
entry's date. No other filtering: amount, account and scenario are left to
the scorer.
"""

from datetime import timedelta
from typing import List
import logging

from reconciliation.models import BankEntry, InternalTransaction
from reconciliation.repositories import TransactionRepository
from reconciliation.repository_calls import call_read

logger = logging.getLogger(__name__)


class CandidateFinder:
    """Date-window lookup over the internal ledger."""

    def __init__(
        self,
        transactions: TransactionRepository,
        window_days: int = 7,
        timeout: float = 5.0,
        retry_delay: float = 0.5,
    ):
        if window_days < 0:
            raise ValueError("window_days cannot be negative")
        self.transactions = transactions
        self.window_days = window_days
        self.timeout = timeout
        self.retry_delay = retry_delay

    async def find(self, entry: BankEntry) -> List[InternalTransaction]:
        """
        Return all internal transactions in the entry's date window.

        Raises:
            ValidationError: if the entry has no usable date or amount
            RepositoryError: if the ledger could not be read (after one retry)
        """
        entry.validate()

        start = entry.transaction_date - timedelta(days=self.window_days)
        end = entry.transaction_date + timedelta(days=self.window_days)

        candidates = await call_read(
            lambda: self.transactions.find_by_date_range(start, end),
            f"find_by_date_range({start}, {end})",
            timeout=self.timeout,
            retry_delay=self.retry_delay,
        )

        logger.debug(f"Found {len(candidates)} transactions between {start} and {end} for entry {entry.id}")
        return list(candidates)
