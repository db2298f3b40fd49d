"""
Remote Applier: executes one translated mutation against a target store.

Writes are idempotent upserts keyed by the shared key, so replaying the same
task is harmless and reports zero changed rows. Failures never propagate:
they are logged and returned as a failed ApplyResult.
"""

import asyncio
import sqlite3
import time

from common.logging_config import get_logger
from common.protocol import TableContract, get_contract, quote_identifier
from common.types import ApplyAction, ApplyResult, ApplyTask, ChangeEvent, ChangeKind
from replicator.database import Store
from replicator.exceptions import RemoteApplyError

logger = get_logger(__name__)

# SQLite VM instructions between deadline checks
_PROGRESS_INTERVAL = 1000


class RemoteApplier:
    """
    Applies ApplyTasks for one direction to its target store.

    A successful write that changed a row is announced on the target store
    as a ChangeEvent carrying this direction's identity, which is what the
    opposite direction's loop guard filters on.
    """

    def __init__(self, direction: str, target: Store, identity: str, timeout: float):
        """
        Args:
            direction: Direction name
            target: Store the direction writes into
            identity: Identity stamped on every write
            timeout: Seconds before a write is abandoned
        """
        self.direction = direction
        self.target = target
        self.identity = identity
        self.timeout = timeout

    def apply(self, task: ApplyTask) -> ApplyResult:
        """
        Execute a task synchronously.

        Returns:
            ApplyResult with the number of rows the statement changed
        """
        try:
            changed, stored = self._execute(task)
        except RemoteApplyError as e:
            logger.warning(
                f"Remote apply failed [direction={self.direction}, entity={task.entity}, "
                f"key={task.key}, action={task.action.value}]: {e.reason}"
            )
            return ApplyResult(ok=False, error=e.reason)

        logger.debug(
            f"Remote apply ok [direction={self.direction}, entity={task.entity}, "
            f"key={task.key}, action={task.action.value}, changed={changed}]"
        )

        if changed:
            self._announce(task, stored)

        return ApplyResult(ok=True, changed=changed)

    async def apply_async(self, task: ApplyTask) -> ApplyResult:
        """
        Execute a task in a worker thread.

        The timeout is enforced inside the thread, so the awaiting worker
        only resumes once the write has really finished or been aborted.
        """
        return await asyncio.to_thread(self.apply, task)

    def _execute(self, task: ApplyTask):
        try:
            contract = get_contract(self.direction, task.entity)
        except KeyError as e:
            raise RemoteApplyError(self.direction, task.entity, task.key, str(e))

        if task.action != ApplyAction.DELETE and task.row is None:
            raise RemoteApplyError(self.direction, task.entity, task.key, "missing row for write")

        deadline = time.monotonic() + self.timeout

        try:
            with self.target.connect(timeout=self.timeout) as conn:
                conn.set_progress_handler(
                    lambda: 1 if time.monotonic() > deadline else 0,
                    _PROGRESS_INTERVAL
                )
                cursor = conn.cursor()
                cursor.execute(self._statement(contract, task.action), self._params(contract, task))
                changed = cursor.rowcount
                conn.commit()

                stored = None
                if changed and task.action != ApplyAction.DELETE:
                    cursor.execute(
                        f"SELECT * FROM {quote_identifier(contract.table)} "
                        f"WHERE {quote_identifier(contract.key_column)} = ?",
                        (task.key,)
                    )
                    row = cursor.fetchone()
                    stored = contract.schema.decode_row(row) if row is not None else None
        except sqlite3.Error as e:
            reason = "timed out" if "interrupted" in str(e) else str(e)
            raise RemoteApplyError(self.direction, task.entity, task.key, reason)

        return max(changed, 0), stored

    @staticmethod
    def _statement(contract: TableContract, action: ApplyAction) -> str:
        if action == ApplyAction.UPSERT:
            return contract.upsert_statement()
        if action == ApplyAction.INSERT_IF_MISSING:
            return contract.insert_if_missing_statement()
        return contract.delete_statement()

    @staticmethod
    def _params(contract: TableContract, task: ApplyTask):
        if task.action == ApplyAction.DELETE:
            return (task.key,)
        return contract.bind(task.row)

    def _announce(self, task: ApplyTask, stored) -> None:
        if task.action == ApplyAction.DELETE:
            event = ChangeEvent(entity=task.entity, kind=ChangeKind.DELETE, key=task.key, origin=self.identity)
        else:
            event = ChangeEvent(
                entity=task.entity,
                kind=ChangeKind.UPDATE,
                key=task.key,
                new=stored,
                origin=self.identity
            )
        self.target.emit(event)
