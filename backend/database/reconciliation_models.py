"""
Reconciliation Engine Database Models

Tables:
- bank_accounts: bank accounts owning imported statement lines
- bank_transactions: imported bank statement lines with their reconciliation state
- transactions: internal accounting ledger (read-only for the engine)
- reconciliation_events: append-only log of reconciliation state transitions
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Text, Boolean, Date, DateTime,
    ForeignKey, Index, CheckConstraint, Enum as SQLEnum, Numeric
)
from sqlalchemy.orm import relationship

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS ====================

class ReconciliationStatus(str, PyEnum):
    """Reconciliation state of a bank entry"""
    UNRECONCILED = "unreconciled"                  # Initial state
    RECONCILED_MATCHED = "reconciled_matched"      # Linked to an internal transaction
    RECONCILED_UNMATCHED = "reconciled_unmatched"  # Confirmed with no internal counterpart

    @property
    def is_reconciled(self) -> bool:
        return self != ReconciliationStatus.UNRECONCILED


def _status_enum(name: str) -> SQLEnum:
    return SQLEnum(
        ReconciliationStatus,
        name=name,
        values_callable=lambda enum: [member.value for member in enum],
    )


# ==================== DATABASE MODELS ====================

class BankAccountDB(Base):
    """Bank account."""
    __tablename__ = "bank_accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    bank_name = Column(String(255), nullable=True)
    current_balance = Column(Numeric(14, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    entries = relationship("BankEntryDB", back_populates="account")


class BankEntryDB(Base):
    """
    Imported bank statement line.

    matched_transaction_id is set if and only if status is reconciled_matched.
    """
    __tablename__ = "bank_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    bank_account_id = Column(String(36), ForeignKey("bank_accounts.id"), nullable=False, index=True)

    # Statement data
    transaction_date = Column(Date, nullable=False, index=True)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    balance_after = Column(Numeric(14, 2), nullable=True)
    reference_number = Column(String(100), nullable=True)
    category = Column(String(100), nullable=True)

    # Reconciliation state (projection of the latest reconciliation event)
    status = Column(
        _status_enum("reconciliation_status_enum"),
        nullable=False,
        default=ReconciliationStatus.UNRECONCILED,
        index=True
    )
    reconciled_date = Column(DateTime(timezone=True), nullable=True)
    matched_transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)

    account = relationship("BankAccountDB", back_populates="entries")
    events = relationship("ReconciliationEventDB", back_populates="entry", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(
            "(status = 'reconciled_matched') = (matched_transaction_id IS NOT NULL)",
            name="ck_bank_transactions_matched_iff_reconciled_matched"
        ),
        CheckConstraint(
            "(status = 'unreconciled') = (reconciled_date IS NULL)",
            name="ck_bank_transactions_reconciled_date_iff_reconciled"
        ),
        Index('ix_bank_transactions_account_date', 'bank_account_id', 'transaction_date'),
        Index('ix_bank_transactions_account_status', 'bank_account_id', 'status'),
    )


class InternalTransactionDB(Base):
    """Internal accounting ledger entry."""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    scenario_id = Column(String(36), nullable=True, index=True)
    scenario_name = Column(String(255), nullable=True)
    date = Column(Date, nullable=False, index=True)
    type = Column(String(100), nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class ReconciliationEventDB(Base):
    """
    Immutable audit trail of reconciliation transitions.

    Rows are only ever inserted, in the same transaction as the
    bank_transactions update they describe.
    """
    __tablename__ = "reconciliation_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    bank_entry_id = Column(
        String(36), ForeignKey("bank_transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status = Column(_status_enum("reconciliation_event_from_status_enum"), nullable=False)
    to_status = Column(_status_enum("reconciliation_event_to_status_enum"), nullable=False)
    actor = Column(String(100), nullable=False)
    matched_transaction_id = Column(String(36), nullable=True)
    occurred_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    entry = relationship("BankEntryDB", back_populates="events")

    __table_args__ = (
        Index('ix_reconciliation_events_entry_time', 'bank_entry_id', 'occurred_at'),
    )


__all__ = [
    'ReconciliationStatus',
    'BankAccountDB',
    'BankEntryDB',
    'InternalTransactionDB',
    'ReconciliationEventDB',
]
