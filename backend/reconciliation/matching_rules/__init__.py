"""
Matching Rules Module
"""

from .bank_entry_rules import BankEntryMatchingRules, amount_difference, day_difference
from .ranker import MatchRanker

__all__ = ["BankEntryMatchingRules", "MatchRanker", "amount_difference", "day_difference"]
