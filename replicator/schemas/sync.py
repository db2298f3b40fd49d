"""Schemas for the sync admin endpoints."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class EnableRequest(BaseModel):
    """Request model for enabling sync."""
    reconcile: bool = Field(default=True, description="Run a bootstrap reconciliation after arming")


class EnableResponse(BaseModel):
    """Response model for enabling sync."""
    enabled: bool
    state: str


class EntityReportResponse(BaseModel):
    direction: str
    entity: str
    scanned: int
    changed: int
    unchanged: int
    failed: int
    pruned: int = 0
    resumed_from: Optional[str] = None
    error: Optional[str] = None


class ReconcileResponse(BaseModel):
    """Response model for a reconciliation run."""
    started_at: str
    finished_at: Optional[str] = None
    scanned: int
    changed: int
    unchanged: int
    failed: int
    pruned: int = 0
    entities: List[EntityReportResponse]


class DirectionStatus(BaseModel):
    name: str
    source: str
    target: str
    identity: str
    armed: bool
    outcomes: Dict[str, int]
    entities: List[str]


class DispatchStatus(BaseModel):
    workers: int
    running: bool
    pending: int
    submitted: int
    completed: int
    failed: int
    dropped: int


class SyncStatusResponse(BaseModel):
    """Response model for sync status."""
    state: str
    contract_version: int
    directions: List[DirectionStatus]
    dispatch: DispatchStatus
    last_reconcile: Optional[ReconcileResponse] = None
