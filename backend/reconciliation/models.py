"""
Reconciliation Domain Models

Plain dataclasses passed between the repositories, the matching rules
and the state manager. ORM rows are converted to these at the repository
boundary so the engine never touches a database session directly.

- BankAccount: owner of bank entries (read-only)
- BankEntry: one line imported from a bank statement/feed
- InternalTransaction: one entry of the internal ledger (never mutated here)
- MatchReason / MatchCandidate: transient scoring results, never persisted
- ReconciliationEvent: append-only audit record of one state transition
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from database.reconciliation_models import ReconciliationStatus, generate_uuid, utc_now
from reconciliation.errors import ValidationError


# ==================== ENUMS ====================

class ReasonCategory(str, Enum):
    """Sub-score category a match reason belongs to"""
    AMOUNT = "amount"
    DATE = "date"
    DESCRIPTION = "description"
    REFERENCE = "reference"
    CATEGORY = "category"


# ==================== PARSING ====================

def parse_amount(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert a raw amount to Decimal.

    Raises:
        ValidationError: if the value is missing or not numeric
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required", field=field_name)
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field_name} must be numeric, got {value!r}", field=field_name)
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite number", field=field_name)
    return amount


def parse_date(value: Any, field_name: str = "date") -> date:
    """
    Convert a raw date (date, datetime or ISO string) to a date.

    Raises:
        ValidationError: if the value is missing or not a valid date
    """
    if value is None or value == "":
        raise ValidationError(f"{field_name} is required", field=field_name)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD), got {value!r}", field=field_name)
    raise ValidationError(f"{field_name} must be a date, got {type(value).__name__}", field=field_name)


def _format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _format_amount(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


# ==================== ENTITIES ====================

@dataclass
class BankAccount:
    """Bank account owning a stream of bank entries."""
    id: str
    name: str
    bank_name: Optional[str] = None
    current_balance: Optional[Decimal] = None
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "bank_name": self.bank_name,
            "current_balance": _format_amount(self.current_balance),
            "is_active": self.is_active,
        }


@dataclass
class BankEntry:
    """
    One externally-sourced ledger line.

    matched_transaction_id is set if and only if status is RECONCILED_MATCHED.
    """
    id: str
    bank_account_id: str
    transaction_date: date
    amount: Decimal
    description: str = ""
    balance_after: Optional[Decimal] = None
    reference_number: Optional[str] = None
    category: Optional[str] = None
    status: ReconciliationStatus = ReconciliationStatus.UNRECONCILED
    reconciled_date: Optional[datetime] = None
    matched_transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
    bank_account_name: Optional[str] = None

    @property
    def is_reconciled(self) -> bool:
        return self.status.is_reconciled

    def validate(self) -> None:
        """
        Check the fields the matching rules rely on, normalising them in place.

        Feed values may arrive as floats, numeric strings, ISO date strings or
        datetimes; after this call amount is a Decimal and transaction_date a date.

        Raises:
            ValidationError: if the date or amount is missing or malformed
        """
        if not self.id:
            raise ValidationError("bank entry id is required", field="id")
        self.transaction_date = parse_date(self.transaction_date, "transaction_date")
        self.amount = parse_amount(self.amount, "amount")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bank_account_id": self.bank_account_id,
            "bank_account_name": self.bank_account_name,
            "transaction_date": _format_date(self.transaction_date),
            "description": self.description,
            "amount": _format_amount(self.amount),
            "balance_after": _format_amount(self.balance_after),
            "reference_number": self.reference_number,
            "category": self.category,
            "status": self.status.value,
            "is_reconciled": self.is_reconciled,
            "reconciled_date": self.reconciled_date.isoformat() if self.reconciled_date else None,
            "matched_transaction_id": self.matched_transaction_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class InternalTransaction:
    """One transaction of the internal accounting ledger."""
    id: str
    date: date
    amount: Decimal
    description: Optional[str] = None
    type: Optional[str] = None
    scenario_id: Optional[str] = None
    scenario_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "scenario_name": self.scenario_name,
            "date": _format_date(self.date),
            "amount": _format_amount(self.amount),
            "description": self.description,
            "type": self.type,
        }


@dataclass(frozen=True)
class MatchReason:
    """A single contribution to a candidate's confidence score."""
    category: ReasonCategory
    points: int
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "points": self.points,
            "label": self.label,
        }


@dataclass
class MatchCandidate:
    """
    A scored, unconfirmed pairing between a bank entry and an internal transaction.

    day_difference and amount_difference are kept for tie-breaking.
    """
    transaction: InternalTransaction
    score: int
    reasons: List[MatchReason] = field(default_factory=list)
    day_difference: int = 0
    amount_difference: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction": self.transaction.to_dict(),
            "score": self.score,
            "reasons": [r.to_dict() for r in self.reasons],
            "day_difference": self.day_difference,
            "amount_difference": float(self.amount_difference),
        }


@dataclass(frozen=True)
class ReconciliationEvent:
    """Append-only record of one reconciliation state transition."""
    bank_entry_id: str
    from_status: ReconciliationStatus
    to_status: ReconciliationStatus
    actor: str
    occurred_at: datetime
    matched_transaction_id: Optional[str] = None
    id: str = field(default_factory=generate_uuid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bank_entry_id": self.bank_entry_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "actor": self.actor,
            "occurred_at": self.occurred_at.isoformat(),
            "matched_transaction_id": self.matched_transaction_id,
        }


@dataclass
class ReconciliationResult:
    """Outcome of a committed transition: the entry's new projection and its event."""
    entry: BankEntry
    event: ReconciliationEvent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "entry": self.entry.to_dict(),
            "event": self.event.to_dict(),
        }


@dataclass
class ReconciliationStats:
    """Summary counts and amounts over a set of bank entries."""
    total: int
    reconciled: int
    unreconciled: int
    total_amount: Decimal
    unreconciled_amount: Decimal
    last_reconciled_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "reconciled": self.reconciled,
            "unreconciled": self.unreconciled,
            "total_amount": float(self.total_amount),
            "unreconciled_amount": float(self.unreconciled_amount),
            "reconciliation_rate": round(self.reconciled / self.total * 100, 2) if self.total > 0 else 0,
            "last_reconciled_at": self.last_reconciled_at.isoformat() if self.last_reconciled_at else None,
        }
