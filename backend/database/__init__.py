from .connection import get_db, engine, AsyncSessionLocal, init_db, check_db, Base

# Import reconciliation models to ensure they are registered with Base
from .reconciliation_models import (
    ReconciliationStatus,
    BankAccountDB, BankEntryDB, InternalTransactionDB, ReconciliationEventDB
)

__all__ = [
    'get_db', 'engine', 'AsyncSessionLocal', 'init_db', 'check_db', 'Base',
    # Reconciliation models
    'ReconciliationStatus',
    'BankAccountDB', 'BankEntryDB', 'InternalTransactionDB', 'ReconciliationEventDB',
]
