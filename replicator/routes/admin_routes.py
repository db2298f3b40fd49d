"""Administrative sync routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from common.logging_config import get_logger
from replicator.replication.sync_engine import SyncEngine
from replicator.schemas.common import ErrorResponse
from replicator.schemas.sync import (
    EnableRequest,
    EnableResponse,
    ReconcileResponse,
    SyncStatusResponse
)

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/sync", tags=["Sync"])

_sync_engine: Optional[SyncEngine] = None


def set_sync_engine(engine: Optional[SyncEngine]):
    """Set the global sync engine instance"""
    global _sync_engine
    _sync_engine = engine


def get_sync_engine() -> Optional[SyncEngine]:
    """Dependency to get the sync engine"""
    return _sync_engine


def require_sync_engine(engine: Optional[SyncEngine] = Depends(get_sync_engine)) -> SyncEngine:
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine not initialized"
        )
    return engine


@router.post("/enable", response_model=EnableResponse)
async def enable_sync(
    request: Optional[EnableRequest] = None,
    engine: SyncEngine = Depends(require_sync_engine)
):
    """
    Run the readiness gate and arm change capture in both directions.

    Parameters:
        - reconcile: Run a bootstrap reconciliation after arming (default true)

    Returns:
        - enabled: Whether sync is now enabled
        - state: Engine state (idle, enabled, disabled, stopped)
    """
    reconcile = request.reconcile if request else True
    enabled = await engine.enable(reconcile=reconcile)
    return EnableResponse(enabled=enabled, state=engine.state.value)


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}}
)
async def reconcile_all(engine: SyncEngine = Depends(require_sync_engine)):
    """
    Run the bootstrap reconciler over every tracked entity.

    Raises:
        - 409: Sync is not enabled
    """
    report = await engine.reconcile_all()
    return ReconcileResponse.model_validate(report.to_dict())


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(engine: SyncEngine = Depends(require_sync_engine)):
    """
    Return engine state, per-direction capture counters and dispatch pool stats.
    """
    return SyncStatusResponse.model_validate(engine.status())
