"""
Reconciliation Scoring Configuration

Named weights, tolerances and thresholds for the bank entry matching rules,
plus the engine-level tunables (date window, repository timeout, read retry
delay, many-to-one policy).

Defaults:
- Amount: exact 50, < 1.00 apart 40, < 10.00 apart 20
- Date: same day 30, <= 2 days 20, <= 7 days 10
- Description: 5 per shared token longer than 3 characters
- Reference number found in the transaction description: 40
- Category equal to the transaction type: 10
- Minimum score to be proposed: 20
"""

from dataclasses import dataclass, asdict, field
from decimal import Decimal
from typing import Any, Dict


@dataclass(frozen=True)
class ScoringConfig:
    """
    Weights and tolerances for scoring one (bank entry, transaction) pair.
    """
    # Amount proximity
    amount_exact_points: int = 50
    amount_close_points: int = 40
    amount_close_tolerance: Decimal = Decimal("1")
    amount_similar_points: int = 20
    amount_similar_tolerance: Decimal = Decimal("10")

    # Date proximity
    date_same_day_points: int = 30
    date_near_points: int = 20
    date_near_days: int = 2
    date_week_points: int = 10
    date_week_days: int = 7

    # Description token overlap
    description_token_points: int = 5
    description_min_token_length: int = 4

    # Reference containment
    reference_points: int = 40

    # Category equality
    category_points: int = 10

    # Candidates scoring below this are never proposed
    min_score: int = 20

    @classmethod
    def from_settings(cls, settings) -> "ScoringConfig":
        """Build the scoring configuration from application settings."""
        return cls(
            amount_exact_points=settings.RECON_WEIGHT_AMOUNT_EXACT,
            amount_close_points=settings.RECON_WEIGHT_AMOUNT_CLOSE,
            amount_close_tolerance=Decimal(str(settings.RECON_AMOUNT_CLOSE_TOLERANCE)),
            amount_similar_points=settings.RECON_WEIGHT_AMOUNT_SIMILAR,
            amount_similar_tolerance=Decimal(str(settings.RECON_AMOUNT_SIMILAR_TOLERANCE)),
            date_same_day_points=settings.RECON_WEIGHT_DATE_SAME_DAY,
            date_near_points=settings.RECON_WEIGHT_DATE_NEAR,
            date_near_days=settings.RECON_DATE_NEAR_DAYS,
            date_week_points=settings.RECON_WEIGHT_DATE_WEEK,
            date_week_days=settings.RECON_DATE_WEEK_DAYS,
            description_token_points=settings.RECON_WEIGHT_DESCRIPTION_TOKEN,
            description_min_token_length=settings.RECON_DESCRIPTION_MIN_TOKEN_LENGTH,
            reference_points=settings.RECON_WEIGHT_REFERENCE,
            category_points=settings.RECON_WEIGHT_CATEGORY,
            min_score=settings.RECON_MIN_SCORE,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["amount_close_tolerance"] = float(self.amount_close_tolerance)
        data["amount_similar_tolerance"] = float(self.amount_similar_tolerance)
        return data


@dataclass(frozen=True)
class EngineConfig:
    """
    Engine-level configuration: candidate window, I/O bounds and match policy.
    """
    date_window_days: int = 7
    repository_timeout_seconds: float = 5.0
    read_retry_delay_seconds: float = 0.5
    allow_many_to_one: bool = True
    scoring: ScoringConfig = field(default_factory=ScoringConfig)

    @classmethod
    def from_settings(cls, settings) -> "EngineConfig":
        """Build the engine configuration from application settings."""
        return cls(
            date_window_days=settings.RECON_DATE_WINDOW_DAYS,
            repository_timeout_seconds=settings.RECON_REPOSITORY_TIMEOUT_SECONDS,
            read_retry_delay_seconds=settings.RECON_READ_RETRY_DELAY_SECONDS,
            allow_many_to_one=settings.RECON_ALLOW_MANY_TO_ONE,
            scoring=ScoringConfig.from_settings(settings),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_window_days": self.date_window_days,
            "repository_timeout_seconds": self.repository_timeout_seconds,
            "read_retry_delay_seconds": self.read_retry_delay_seconds,
            "allow_many_to_one": self.allow_many_to_one,
            "scoring": self.scoring.to_dict(),
        }
