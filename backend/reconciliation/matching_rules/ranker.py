"""
Match Ranker

Scores every candidate transaction for a bank entry, drops those below the
minimum score and orders the rest best-first.

Ordering (stable and reproducible):
1. score, descending
2. day difference, ascending
3. absolute amount difference, ascending
4. transaction id, ascending
"""

from typing import Iterable, List, Optional

from reconciliation.matching_rules.bank_entry_rules import (
    BankEntryMatchingRules,
    amount_difference,
    day_difference,
)
from reconciliation.models import BankEntry, InternalTransaction, MatchCandidate


def _sort_key(candidate: MatchCandidate):
    return (
        -candidate.score,
        candidate.day_difference,
        candidate.amount_difference,
        str(candidate.transaction.id),
    )


class MatchRanker:
    """Aggregates rule scores into ranked match candidates."""

    def __init__(self, rules: Optional[BankEntryMatchingRules] = None):
        self.rules = rules or BankEntryMatchingRules()

    def rank(
        self,
        entry: BankEntry,
        transactions: Iterable[InternalTransaction]
    ) -> List[MatchCandidate]:
        """
        Rank candidate transactions for a bank entry.

        Args:
            entry: The bank entry being reconciled
            transactions: Candidate internal transactions (typically the date window)

        Returns:
            Candidates at or above the minimum score, best first
        """
        candidates = []

        for transaction in transactions:
            score, reasons = self.rules.score(entry, transaction)
            if not self.rules.is_above_threshold(score):
                continue

            candidates.append(MatchCandidate(
                transaction=transaction,
                score=score,
                reasons=reasons,
                day_difference=day_difference(entry, transaction),
                amount_difference=amount_difference(entry, transaction),
            ))

        candidates.sort(key=_sort_key)
        return candidates
