"""
Change Capture: turns committed source-store writes into dispatched apply tasks.

Runs synchronously in the writer's thread and only decides, translates and
enqueues; the peer write itself happens later on a dispatch pool worker.
Nothing raised here ever reaches the writer.
"""

from enum import Enum
from typing import Any, Callable, Dict, Optional

from common.constants import ENTITY_OAUTH_SESSION
from common.logging_config import get_logger
from common.types import ApplyAction, ApplyTask, ChangeEvent, ChangeKind
from replicator.database import Store
from replicator.entity_config import EntitySyncConfig, SyncEntityConfig
from replicator.exceptions import TranslationError
from replicator.replication.dispatch_pool import DispatchPool
from replicator.replication.loop_guard import LoopGuard
from replicator.replication.remote_applier import RemoteApplier
from replicator.replication.translation import remap_enum, translate

logger = get_logger(__name__)


class CaptureOutcome(str, Enum):
    DISPATCHED = "dispatched"
    NOT_ARMED = "not_armed"
    UNTRACKED = "untracked"
    LOOP_DETECTED = "loop_detected"
    IRRELEVANT = "irrelevant"
    FAILED = "failed"
    DROPPED = "dropped"


Policy = Callable[[ChangeEvent, EntitySyncConfig, SyncEntityConfig], Optional[ApplyAction]]


def relevant_change(old: Optional[Dict[str, Any]], new: Optional[Dict[str, Any]], fields) -> bool:
    """True if any sync-relevant field differs between the old and new images."""
    old = old or {}
    new = new or {}
    return any(old.get(field) != new.get(field) for field in fields)


def default_policy(
    event: ChangeEvent,
    settings: EntitySyncConfig,
    config: SyncEntityConfig
) -> Optional[ApplyAction]:
    if event.kind == ChangeKind.DELETE:
        return ApplyAction.DELETE
    if event.kind == ChangeKind.INSERT:
        if settings.filter_captured_inserts and not settings.matches_filter(event.new or {}):
            return None
        return ApplyAction.UPSERT
    if relevant_change(event.old, event.new, settings.relevant_fields):
        return ApplyAction.UPSERT
    return None


def is_mirrored_oauth(row: Optional[Dict[str, Any]], config: SyncEntityConfig) -> bool:
    """
    An OAuth session has a peer mirror iff it is authorized and holds an access token.

    An unknown status counts as the configured default (error).
    """
    if row is None:
        return False

    status = row.get("status")
    try:
        status = remap_enum(status, config.oauth_status)
    except TranslationError:
        logger.warning(
            f"Unknown OAuth session status [key={row.get('id')}, status={status!r}], "
            f"treating as {config.oauth_status.default}"
        )
        status = config.oauth_status.default

    return status == config.authorized_status and row.get("access_token") is not None


def oauth_session_policy(
    event: ChangeEvent,
    settings: EntitySyncConfig,
    config: SyncEntityConfig
) -> Optional[ApplyAction]:
    """
    State-gated mirroring: entering authorized upserts, leaving it deletes.

    A token refresh while staying authorized upserts too; every other
    transition is a no-op.
    """
    if event.kind == ChangeKind.DELETE:
        return ApplyAction.DELETE

    was_mirrored = is_mirrored_oauth(event.old, config)
    now_mirrored = is_mirrored_oauth(event.new, config)

    if was_mirrored and not now_mirrored:
        return ApplyAction.DELETE
    if now_mirrored and not was_mirrored:
        return ApplyAction.UPSERT
    if now_mirrored and relevant_change(event.old, event.new, settings.relevant_fields):
        return ApplyAction.UPSERT
    return None


POLICIES: Dict[str, Policy] = {
    ENTITY_OAUTH_SESSION: oauth_session_policy,
}


class ChangeCapture:
    """
    Listener on a direction's source store.

    Args:
        direction: Direction name
        source: Store whose writes are captured
        guard: Loop guard for the source store
        applier: Remote Applier for the direction's target store
        pool: Dispatch pool running the apply tasks
        config: Entity sync settings
    """

    def __init__(
        self,
        direction: str,
        source: Store,
        guard: LoopGuard,
        applier: RemoteApplier,
        pool: DispatchPool,
        config: SyncEntityConfig
    ):
        self.direction = direction
        self.source = source
        self.guard = guard
        self.applier = applier
        self.pool = pool
        self.config = config
        self.armed = False
        self.outcomes: Dict[str, int] = {outcome.value: 0 for outcome in CaptureOutcome}

    def arm(self) -> None:
        if self.armed:
            return
        self.source.add_listener(self.on_change)
        self.armed = True
        logger.info(f"Change capture armed [direction={self.direction}, store={self.source.name}]")

    def disarm(self) -> None:
        if not self.armed:
            return
        self.source.remove_listener(self.on_change)
        self.armed = False
        logger.info(f"Change capture disarmed [direction={self.direction}]")

    def on_change(self, event: ChangeEvent) -> CaptureOutcome:
        outcome = self._capture(event)
        self.outcomes[outcome.value] += 1
        return outcome

    def _capture(self, event: ChangeEvent) -> CaptureOutcome:
        if not self.armed:
            return CaptureOutcome.NOT_ARMED

        settings = self.config.entity(self.direction, event.entity)
        if settings is None:
            return CaptureOutcome.UNTRACKED

        if self.guard.is_replicated(event):
            logger.debug(
                f"Replicated write ignored [direction={self.direction}, entity={event.entity}, "
                f"key={event.key}, origin={event.origin}]"
            )
            return CaptureOutcome.LOOP_DETECTED

        try:
            policy = POLICIES.get(event.entity, default_policy)
            action = policy(event, settings, self.config)
            if action is None:
                logger.debug(
                    f"No sync-relevant change [direction={self.direction}, entity={event.entity}, "
                    f"key={event.key}, kind={event.kind.value}]"
                )
                return CaptureOutcome.IRRELEVANT

            task = self._build_task(event, action)
        except Exception as e:
            logger.error(
                f"Change capture failed [direction={self.direction}, entity={event.entity}, "
                f"key={event.key}]: {e}",
                exc_info=True
            )
            return CaptureOutcome.FAILED

        if not self.pool.submit(task.key, lambda: self.applier.apply_async(task)):
            return CaptureOutcome.DROPPED

        return CaptureOutcome.DISPATCHED

    def _build_task(self, event: ChangeEvent, action: ApplyAction) -> ApplyTask:
        if action == ApplyAction.DELETE:
            return ApplyTask(self.direction, event.entity, action, event.key)

        row = translate(self.direction, event.entity, event.new, self.config)
        return ApplyTask(self.direction, event.entity, action, event.key, row)
