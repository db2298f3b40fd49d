"""Shared data type definitions (ChangeEvent, ApplyTask, ApplyResult)."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ApplyAction(str, Enum):
    UPSERT = "upsert"
    INSERT_IF_MISSING = "insert_if_missing"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """
    A committed row-level mutation on one store.

    ``origin`` is None for application writes and carries the replicator
    identity for writes made by the Remote Applier.
    """
    entity: str
    kind: ChangeKind
    key: str
    old: Optional[Dict[str, Any]] = None
    new: Optional[Dict[str, Any]] = None
    origin: Optional[str] = None


@dataclass(frozen=True)
class ApplyTask:
    """
    One translated mutation destined for the target store of a direction.
    """
    direction: str
    entity: str
    action: ApplyAction
    key: str
    row: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ApplyResult:
    ok: bool
    changed: int = 0
    error: Optional[str] = None
