"""
Bootstrap Reconciler.

Walks every tracked source table in key order and pushes each row through
the same translation and Remote Applier path as live capture. Because every
apply is idempotent, the pass can be repeated, resumed, or run alongside
live capture at the cost of redundant writes only. Entities configured with
prune_orphans also get their target table walked for mirrors whose source
row is gone.
"""

import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from common.constants import ENTITY_OAUTH_SESSION
from common.logging_config import get_logger
from common.protocol import SOURCE_TABLES, get_contract
from common.types import ApplyAction, ApplyTask
from replicator.entity_config import SyncEntityConfig
from replicator.repositories.tracked_table import TrackedTableRepository
from replicator.replication.change_capture import is_mirrored_oauth
from replicator.replication.checkpoint_store import CheckpointStore
from replicator.replication.directions import Direction
from replicator.replication.remote_applier import RemoteApplier
from replicator.replication.translation import translate
from replicator.utils import get_current_timestamp

logger = get_logger(__name__)


@dataclass
class EntityReport:
    direction: str
    entity: str
    scanned: int = 0
    changed: int = 0
    unchanged: int = 0
    failed: int = 0
    pruned: int = 0
    resumed_from: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ReconcileReport:
    started_at: str
    finished_at: Optional[str] = None
    entities: List[EntityReport] = field(default_factory=list)

    @property
    def scanned(self) -> int:
        return sum(e.scanned for e in self.entities)

    @property
    def changed(self) -> int:
        return sum(e.changed for e in self.entities)

    @property
    def unchanged(self) -> int:
        return sum(e.unchanged for e in self.entities)

    @property
    def failed(self) -> int:
        return sum(e.failed for e in self.entities)

    @property
    def pruned(self) -> int:
        return sum(e.pruned for e in self.entities)

    def entity(self, direction: str, entity: str) -> Optional[EntityReport]:
        for report in self.entities:
            if report.direction == direction and report.entity == entity:
                return report
        return None

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "scanned": self.scanned,
            "changed": self.changed,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "pruned": self.pruned,
            "entities": [asdict(e) for e in self.entities],
        }


class BootstrapReconciler:
    """
    Full-table reconciliation for every direction and tracked entity.

    Args:
        directions: Directions to reconcile, in order
        appliers: Remote Applier per direction name
        checkpoints: Checkpoint storage
        config: Entity sync settings (tracked entities and bootstrap filters)
        batch_size: Rows read per keyset page
    """

    def __init__(
        self,
        directions: List[Direction],
        appliers: Dict[str, RemoteApplier],
        checkpoints: CheckpointStore,
        config: SyncEntityConfig,
        batch_size: int
    ):
        self.directions = directions
        self.appliers = appliers
        self.checkpoints = checkpoints
        self.config = config
        self.batch_size = batch_size

    def run(self) -> ReconcileReport:
        """Reconcile all directions. Blocking; call from a worker thread."""
        report = ReconcileReport(started_at=get_current_timestamp())
        logger.info("Bootstrap reconciliation started")

        for direction in self.directions:
            for entity in self.config.tracked_entities(direction.name):
                report.entities.append(self.reconcile_entity(direction, entity))

        report.finished_at = get_current_timestamp()
        logger.info(
            f"Bootstrap reconciliation finished [scanned={report.scanned}, changed={report.changed}, "
            f"unchanged={report.unchanged}, pruned={report.pruned}, failed={report.failed}]"
        )
        return report

    def reconcile_entity(self, direction: Direction, entity: str) -> EntityReport:
        settings = self.config.entity(direction.name, entity)
        schema = SOURCE_TABLES[(direction.name, entity)]
        repository = TrackedTableRepository(direction.source, schema, entity)
        applier = self.appliers[direction.name]

        report = EntityReport(direction.name, entity)
        after_key = None

        try:
            checkpoint = self.checkpoints.begin(direction.name, entity)
            report.resumed_from = after_key = checkpoint.last_key

            while True:
                rows = repository.scan(
                    after_key=after_key,
                    limit=self.batch_size,
                    equals=settings.bootstrap_filter.equals,
                    not_null=settings.bootstrap_filter.not_null
                )
                if not rows:
                    break

                batch = EntityReport(direction.name, entity)
                for row in rows:
                    self._reconcile_row(direction, applier, entity, row[schema.key_column], row, batch)

                after_key = rows[-1][schema.key_column]
                self.checkpoints.advance(checkpoint, after_key, batch.scanned, batch.changed, batch.failed)

                report.scanned += batch.scanned
                report.changed += batch.changed
                report.unchanged += batch.unchanged
                report.failed += batch.failed

                if len(rows) < self.batch_size:
                    break

            self.checkpoints.complete(checkpoint)

            if settings.prune_orphans:
                self._prune_orphans(direction, applier, entity, repository, report)
        except sqlite3.Error as e:
            report.failed += 1
            report.error = str(e)
            logger.warning(
                f"Reconciliation aborted [direction={direction.name}, entity={entity}, "
                f"last_key={after_key}]: {e}"
            )
            return report

        logger.info(
            f"Reconciled {entity} [direction={direction.name}, scanned={report.scanned}, "
            f"changed={report.changed}, pruned={report.pruned}, failed={report.failed}]"
        )
        return report

    def _reconcile_row(
        self,
        direction: Direction,
        applier: RemoteApplier,
        entity: str,
        key: str,
        row: dict,
        report: EntityReport
    ) -> None:
        report.scanned += 1
        try:
            translated = translate(direction.name, entity, row, self.config)
            result = applier.apply(ApplyTask(direction.name, entity, direction.bootstrap_action, key, translated))
        except Exception as e:
            report.failed += 1
            logger.error(
                f"Reconciliation failed for row [direction={direction.name}, entity={entity}, key={key}]: {e}",
                exc_info=True
            )
            return

        if not result.ok:
            report.failed += 1
        elif result.changed:
            report.changed += 1
        else:
            report.unchanged += 1

    def _prune_orphans(
        self,
        direction: Direction,
        applier: RemoteApplier,
        entity: str,
        source: TrackedTableRepository,
        report: EntityReport
    ) -> None:
        """
        Delete target rows whose source row is gone or no longer mirrored.

        Catches deletes that live capture missed. Not checkpointed; every
        pass walks the whole target table.
        """
        contract = get_contract(direction.name, entity)
        target = TrackedTableRepository(direction.target, contract.schema, entity)
        after_key = None

        while True:
            rows = target.scan(after_key=after_key, limit=self.batch_size)
            if not rows:
                break

            for row in rows:
                key = row[contract.key_column]
                if self._is_mirrored(entity, source.get(key)):
                    continue
                result = applier.apply(ApplyTask(direction.name, entity, ApplyAction.DELETE, key))
                if not result.ok:
                    report.failed += 1
                elif result.changed:
                    report.pruned += 1
                    logger.info(f"Pruned orphan {entity} [direction={direction.name}, key={key}]")

            after_key = rows[-1][contract.key_column]
            if len(rows) < self.batch_size:
                break

    def _is_mirrored(self, entity: str, row: Optional[dict]) -> bool:
        if entity == ENTITY_OAUTH_SESSION:
            return is_mirrored_oauth(row, self.config)
        return row is not None
