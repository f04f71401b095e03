"""
Bank Entry Matching Rules

Scores one bank entry against one internal transaction.

Sub-scores (additive):
- amount: absolute values compared, sign conventions differ between feed and ledger
- date: absolute day difference
- description: tokens of the transaction description found in the bank description
- reference: bank reference/check number found in the transaction description
- category: bank category equal to the transaction type (case-insensitive)

Every rule is a pure function of the pair and the ScoringConfig.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from reconciliation.models import (
    BankEntry,
    InternalTransaction,
    MatchReason,
    ReasonCategory,
)
from reconciliation.scoring_config import ScoringConfig


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def amount_difference(entry: BankEntry, transaction: InternalTransaction) -> Decimal:
    """Absolute difference between the absolute amounts."""
    return abs(abs(entry.amount) - abs(transaction.amount))


def day_difference(entry: BankEntry, transaction: InternalTransaction) -> int:
    """Absolute number of days between the entry date and the transaction date."""
    return abs((_as_date(entry.transaction_date) - _as_date(transaction.date)).days)


class BankEntryMatchingRules:
    """
    Scoring rules for bank entry reconciliation.
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()

    def score(
        self,
        entry: BankEntry,
        transaction: InternalTransaction
    ) -> Tuple[int, List[MatchReason]]:
        """
        Score one pair.

        Returns:
            Tuple of (total_score, reasons) with reasons in rule order
        """
        reasons = []

        for rule in (
            self.score_amount,
            self.score_date,
            self.score_description,
            self.score_reference,
            self.score_category,
        ):
            reason = rule(entry, transaction)
            if reason is not None:
                reasons.append(reason)

        total = sum(r.points for r in reasons)
        return total, reasons

    def is_above_threshold(self, score: int) -> bool:
        return score >= self.config.min_score

    def score_amount(self, entry: BankEntry, transaction: InternalTransaction) -> Optional[MatchReason]:
        """Score amount proximity."""
        diff = amount_difference(entry, transaction)

        if diff == 0:
            return MatchReason(ReasonCategory.AMOUNT, self.config.amount_exact_points, "Exact amount")
        if diff < self.config.amount_close_tolerance:
            return MatchReason(ReasonCategory.AMOUNT, self.config.amount_close_points, "Very close amount")
        if diff < self.config.amount_similar_tolerance:
            return MatchReason(ReasonCategory.AMOUNT, self.config.amount_similar_points, "Similar amount")

        return None

    def score_date(self, entry: BankEntry, transaction: InternalTransaction) -> Optional[MatchReason]:
        """Score date proximity."""
        days = day_difference(entry, transaction)

        if days == 0:
            return MatchReason(ReasonCategory.DATE, self.config.date_same_day_points, "Same date")

        label = f"{days} day apart" if days == 1 else f"{days} days apart"
        if days <= self.config.date_near_days:
            return MatchReason(ReasonCategory.DATE, self.config.date_near_points, label)
        if days <= self.config.date_week_days:
            return MatchReason(ReasonCategory.DATE, self.config.date_week_points, label)

        return None

    def score_description(self, entry: BankEntry, transaction: InternalTransaction) -> Optional[MatchReason]:
        """Score shared description tokens (each repeated token counts again)."""
        bank_desc = (entry.description or "").lower()
        txn_desc = (transaction.description or "").lower()

        if not bank_desc or not txn_desc:
            return None

        matching = [
            token for token in txn_desc.split()
            if len(token) >= self.config.description_min_token_length and token in bank_desc
        ]
        if not matching:
            return None

        count = len(matching)
        label = f"{count} word in common" if count == 1 else f"{count} words in common"
        return MatchReason(
            ReasonCategory.DESCRIPTION,
            count * self.config.description_token_points,
            label,
        )

    def score_reference(self, entry: BankEntry, transaction: InternalTransaction) -> Optional[MatchReason]:
        """Score the bank reference number appearing in the transaction description."""
        reference = entry.reference_number
        if not reference or not transaction.description:
            return None

        if reference in transaction.description:
            return MatchReason(ReasonCategory.REFERENCE, self.config.reference_points, "Reference number found")

        return None

    def score_category(self, entry: BankEntry, transaction: InternalTransaction) -> Optional[MatchReason]:
        """Score bank category against the transaction type."""
        if not entry.category or not transaction.type:
            return None

        if entry.category.lower() == transaction.type.lower():
            return MatchReason(ReasonCategory.CATEGORY, self.config.category_points, "Matching category")

        return None
