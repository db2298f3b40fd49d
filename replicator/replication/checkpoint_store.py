"""
Reconciliation checkpoints, stored in the local store's sync_checkpoints table.
"""

from dataclasses import dataclass
from typing import List, Optional

from common.logging_config import get_logger
from replicator.database import Store
from replicator.utils import get_current_timestamp

logger = get_logger(__name__)

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"

CHECKPOINT_SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_checkpoints (
    direction TEXT NOT NULL,
    entity TEXT NOT NULL,
    last_key TEXT,
    status TEXT NOT NULL,
    rows_scanned INTEGER NOT NULL DEFAULT 0,
    rows_changed INTEGER NOT NULL DEFAULT 0,
    rows_failed INTEGER NOT NULL DEFAULT 0,
    started_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (direction, entity)
)
"""


@dataclass
class Checkpoint:
    direction: str
    entity: str
    last_key: Optional[str]
    status: str
    rows_scanned: int = 0
    rows_changed: int = 0
    rows_failed: int = 0
    started_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def interrupted(self) -> bool:
        return self.status == STATUS_RUNNING


class CheckpointStore:
    """
    Last processed key per (direction, entity) pass.

    A pass marks its checkpoint running, advances it after every batch and
    marks it completed at the end; a checkpoint still running at the start
    of the next pass means the previous one was interrupted.
    """

    def __init__(self, store: Store):
        self.store = store

    def init_schema(self) -> None:
        with self.store.connect() as conn:
            conn.execute(CHECKPOINT_SCHEMA)
            conn.commit()

    def get(self, direction: str, entity: str) -> Optional[Checkpoint]:
        with self.store.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM sync_checkpoints WHERE direction = ? AND entity = ?",
                (direction, entity)
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return Checkpoint(**{key: row[key] for key in row.keys()})

    def list_checkpoints(self) -> List[Checkpoint]:
        with self.store.connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM sync_checkpoints ORDER BY direction, entity")
            return [Checkpoint(**{key: row[key] for key in row.keys()}) for row in cursor.fetchall()]

    def begin(self, direction: str, entity: str) -> Checkpoint:
        """
        Start or resume a pass.

        Returns:
            The checkpoint to continue from; last_key is None for a fresh pass
        """
        existing = self.get(direction, entity)
        if existing is not None and existing.interrupted:
            logger.info(
                f"Resuming interrupted reconciliation [direction={direction}, entity={entity}, "
                f"last_key={existing.last_key}]"
            )
            return existing

        now = get_current_timestamp()
        with self.store.connect() as conn:
            conn.execute(
                """
                INSERT INTO sync_checkpoints
                    (direction, entity, last_key, status, rows_scanned, rows_changed, rows_failed,
                     started_at, updated_at)
                VALUES (?, ?, NULL, ?, 0, 0, 0, ?, ?)
                ON CONFLICT(direction, entity) DO UPDATE SET
                    last_key = NULL,
                    status = excluded.status,
                    rows_scanned = 0,
                    rows_changed = 0,
                    rows_failed = 0,
                    started_at = excluded.started_at,
                    updated_at = excluded.updated_at
                """,
                (direction, entity, STATUS_RUNNING, now, now)
            )
            conn.commit()

        return Checkpoint(direction, entity, None, STATUS_RUNNING, started_at=now, updated_at=now)

    def advance(self, checkpoint: Checkpoint, last_key: str, scanned: int, changed: int, failed: int) -> None:
        """Record progress after a batch. Counters are added to the stored totals."""
        checkpoint.last_key = last_key
        checkpoint.rows_scanned += scanned
        checkpoint.rows_changed += changed
        checkpoint.rows_failed += failed
        checkpoint.updated_at = get_current_timestamp()

        with self.store.connect() as conn:
            conn.execute(
                """
                UPDATE sync_checkpoints
                SET last_key = ?, rows_scanned = ?, rows_changed = ?, rows_failed = ?, updated_at = ?
                WHERE direction = ? AND entity = ?
                """,
                (
                    checkpoint.last_key, checkpoint.rows_scanned, checkpoint.rows_changed,
                    checkpoint.rows_failed, checkpoint.updated_at,
                    checkpoint.direction, checkpoint.entity
                )
            )
            conn.commit()

    def complete(self, checkpoint: Checkpoint) -> None:
        checkpoint.status = STATUS_COMPLETED
        checkpoint.updated_at = get_current_timestamp()

        with self.store.connect() as conn:
            conn.execute(
                "UPDATE sync_checkpoints SET status = ?, updated_at = ? WHERE direction = ? AND entity = ?",
                (checkpoint.status, checkpoint.updated_at, checkpoint.direction, checkpoint.entity)
            )
            conn.commit()
