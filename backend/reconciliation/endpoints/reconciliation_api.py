"""
Reconciliation API Endpoints

REST API for the bank reconciliation engine:
- GET /api/reconciliation/status - Module status and active configuration
- GET /api/reconciliation/accounts - Active bank accounts
- GET /api/reconciliation/entries - List/search bank entries
- GET /api/reconciliation/entries/{entry_id} - Get a single bank entry
- GET /api/reconciliation/entries/{entry_id}/candidates - Ranked match candidates
- POST /api/reconciliation/entries/{entry_id}/match - Reconcile against a transaction
- POST /api/reconciliation/entries/{entry_id}/no-match - Reconcile without a match
- POST /api/reconciliation/entries/{entry_id}/rollback - Undo a reconciliation
- GET /api/reconciliation/entries/{entry_id}/history - Reconciliation event log
- GET /api/reconciliation/stats - Reconciliation statistics

Every route except /status requires internal API key authentication.
"""

import logging
from typing import Optional
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database.connection import get_db
from middleware.internal_auth import InternalService, require_internal_service
from reconciliation.errors import (
    InvalidStateError,
    NotFoundError,
    ReconciliationError,
    RepositoryError,
    TransactionAlreadyMatchedError,
    ValidationError,
)
from reconciliation.scoring_config import EngineConfig
from reconciliation.services.reconciliation_service import ReconciliationService
from utils.validation_errors import (
    raise_conflict,
    raise_invalid_parameter,
    raise_missing_parameter,
    raise_not_found,
    raise_service_unavailable,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Request/Response Models ====================

class CommitMatchRequest(BaseModel):
    """Request to reconcile a bank entry against an internal transaction."""
    transaction_id: str = Field(..., description="Internal transaction ID chosen by the user")


class ReconciliationStatsResponse(BaseModel):
    """Response for reconciliation statistics."""
    account_id: Optional[str]
    total: int
    reconciled: int
    unreconciled: int
    total_amount: float
    unreconciled_amount: float
    reconciliation_rate: float
    last_reconciled_at: Optional[str]


# ==================== Error Mapping ====================

def raise_for_reconciliation_error(error: ReconciliationError):
    """
    Raise the HTTPException matching a reconciliation engine error.

    ValidationError -> 422, NotFoundError -> 404, InvalidStateError -> 409,
    RepositoryError -> 503.
    """
    if isinstance(error, ValidationError):
        if error.field and str(error).endswith("is required"):
            raise_missing_parameter(error.field, str(error))
        raise_invalid_parameter(error.field, str(error))

    if isinstance(error, NotFoundError):
        raise_not_found(error.resource, error.resource_id, str(error))

    if isinstance(error, TransactionAlreadyMatchedError):
        raise_conflict("transaction_already_matched", str(error), {
            "transaction_id": error.transaction_id,
            "matched_entry_ids": error.matched_entry_ids,
        })

    if isinstance(error, InvalidStateError):
        raise_conflict("invalid_state", str(error), {
            "entry_id": error.entry_id,
            "expected_status": error.expected_status,
            "actual_status": error.actual_status,
        })

    if isinstance(error, RepositoryError):
        logger.error(f"Reconciliation store unavailable ({error.operation}): {error}")
        raise_service_unavailable("Reconciliation store unavailable, try again", error.operation)

    logger.error(f"Unhandled reconciliation error: {error}")
    raise HTTPException(status_code=500, detail="Reconciliation failed")


# ==================== Dependencies ====================

def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings)
) -> ReconciliationService:
    """Service backed by the request's database session."""
    return ReconciliationService.from_session(db, EngineConfig.from_settings(settings))


def get_actor(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Who is performing the action (recorded in the event log)."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else "system"


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status(settings: Settings = Depends(get_settings)):
    """
    Get reconciliation module status.

    Returns the active engine configuration (window, weights, policy).
    """
    return {
        "module": "reconciliation",
        "status": "operational",
        "version": settings.API_VERSION,
        "config": EngineConfig.from_settings(settings).to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/accounts", summary="List bank accounts")
async def list_accounts(
    service: ReconciliationService = Depends(get_reconciliation_service),
    _auth: InternalService = Depends(require_internal_service)
):
    """List active bank accounts, ordered by name."""
    try:
        accounts = await service.list_accounts()
        return {"accounts": [a.to_dict() for a in accounts], "count": len(accounts)}

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to list accounts: {e}")
        raise HTTPException(status_code=500, detail="Failed to list accounts")


@router.get("/entries", summary="List bank entries")
async def list_entries(
    account_id: Optional[str] = Query(default=None, description="Filter by bank account"),
    include_reconciled: bool = Query(default=False, description="Include reconciled entries"),
    search: Optional[str] = Query(default=None, description="Search description, reference, account or amount"),
    service: ReconciliationService = Depends(get_reconciliation_service),
    _auth: InternalService = Depends(require_internal_service)
):
    """
    List bank entries, newest first.

    Reconciled entries are hidden unless include_reconciled is set.
    """
    try:
        entries = await service.list_entries(
            account_id=account_id,
            include_reconciled=include_reconciled,
            search=search
        )
        return {"entries": [e.to_dict() for e in entries], "count": len(entries)}

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to list bank entries: {e}")
        raise HTTPException(status_code=500, detail="Failed to list bank entries")


@router.get("/entries/{entry_id}", summary="Get a bank entry")
async def get_entry(
    entry_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    _auth: InternalService = Depends(require_internal_service)
):
    try:
        entry = await service.get_entry(entry_id)
        return entry.to_dict()

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to get bank entry {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get bank entry")


@router.get("/entries/{entry_id}/candidates", summary="Find match candidates")
async def find_candidates(
    entry_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    _auth: InternalService = Depends(require_internal_service)
):
    """
    Find ranked match candidates for a bank entry.

    Returns scored candidates with the reasons behind each score, best
    first. Nothing is written; an empty list means no plausible match.
    """
    try:
        candidates = await service.find_candidates(entry_id)
        return {
            "bank_entry_id": entry_id,
            "candidates": [c.to_dict() for c in candidates],
            "count": len(candidates)
        }

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to find candidates for {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to find candidates")


@router.post("/entries/{entry_id}/match", summary="Reconcile with a transaction")
async def commit_match(
    entry_id: str,
    request: CommitMatchRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    actor: str = Depends(get_actor),
    _auth: InternalService = Depends(require_internal_service)
):
    """
    Reconcile a bank entry against the chosen internal transaction.

    Returns 409 if the entry is already reconciled (including when a
    concurrent request reconciled it first).
    """
    try:
        result = await service.commit_match(entry_id, request.transaction_id, actor=actor)
        return result.to_dict()

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to commit match for {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to commit match")


@router.post("/entries/{entry_id}/no-match", summary="Reconcile without a match")
async def commit_no_match(
    entry_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    actor: str = Depends(get_actor),
    _auth: InternalService = Depends(require_internal_service)
):
    """Mark a bank entry as reconciled with no internal counterpart."""
    try:
        result = await service.commit_no_match(entry_id, actor=actor)
        return result.to_dict()

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to commit no-match for {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to commit no-match")


@router.post("/entries/{entry_id}/rollback", summary="Undo a reconciliation")
async def rollback(
    entry_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    actor: str = Depends(get_actor),
    _auth: InternalService = Depends(require_internal_service)
):
    """Return a reconciled bank entry to unreconciled."""
    try:
        result = await service.rollback(entry_id, actor=actor)
        return result.to_dict()

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to roll back {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to roll back reconciliation")


@router.get("/entries/{entry_id}/history", summary="Reconciliation history")
async def get_history(
    entry_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    _auth: InternalService = Depends(require_internal_service)
):
    """Reconciliation event log of a bank entry, oldest first."""
    try:
        events = await service.get_history(entry_id)
        return {
            "bank_entry_id": entry_id,
            "events": [e.to_dict() for e in events],
            "count": len(events)
        }

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to get history for {entry_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get reconciliation history")


@router.get("/stats", response_model=ReconciliationStatsResponse, summary="Reconciliation statistics")
async def get_stats(
    account_id: Optional[str] = Query(default=None, description="Filter by bank account"),
    service: ReconciliationService = Depends(get_reconciliation_service),
    _auth: InternalService = Depends(require_internal_service)
):
    """
    Get reconciliation statistics.

    Counts and signed amount totals over all entries (reconciled or not)
    of the account, or of every account when none is given.
    """
    try:
        stats = await service.get_stats(account_id)
        return ReconciliationStatsResponse(account_id=account_id, **stats.to_dict())

    except ReconciliationError as e:
        raise_for_reconciliation_error(e)
    except Exception as e:
        logger.error(f"Failed to get reconciliation stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to get reconciliation stats")
