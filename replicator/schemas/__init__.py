"""Pydantic schemas for API requests and responses."""

from replicator.schemas.sync import (
    EnableRequest,
    EnableResponse,
    ReconcileResponse,
    SyncStatusResponse
)
from replicator.schemas.common import ErrorResponse

__all__ = [
    "EnableRequest",
    "EnableResponse",
    "ReconcileResponse",
    "SyncStatusResponse",
    "ErrorResponse",
]
