"""
Sync engine: wires both directions together and exposes enable / reconcile_all.

Lifecycle:
    IDLE --enable()--> (readiness gate) --+--> ENABLED
                                          +--> DISABLED (peer never ready; permanent)
    ENABLED --shutdown()--> STOPPED
"""

import asyncio
from enum import Enum
from typing import Dict, List, Optional

from common.logging_config import get_logger
from common.protocol import PEER_CONTRACT_VERSION, required_peer_columns
from replicator.database import Store
from replicator.entity_config import SyncEntityConfig, default_entity_config
from replicator.exceptions import ReadinessTimeout, SyncNotEnabledError
from replicator.replication.change_capture import ChangeCapture
from replicator.replication.checkpoint_store import CheckpointStore
from replicator.replication.directions import Direction, build_directions, inbound_identity
from replicator.replication.dispatch_pool import DispatchPool
from replicator.replication.loop_guard import LoopGuard
from replicator.replication.readiness_gate import ReadinessGate
from replicator.replication.reconciler import BootstrapReconciler, ReconcileReport
from replicator.replication.remote_applier import RemoteApplier

logger = get_logger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    ENABLED = "enabled"
    DISABLED = "disabled"
    STOPPED = "stopped"


class SyncEngine:
    """
    Bidirectional sync between the local store and the peer store.

    Args:
        local: Local (authoritative) store
        peer: Peer store
        local_identity: Identity of writes into the peer
        peer_identity: Identity of writes into the local store
        config: Entity sync settings
        readiness_attempts: Readiness probes before giving up
        readiness_delay: Seconds between readiness probes
        apply_timeout: Per-write timeout in seconds
        workers: Dispatch pool size
        queue_size: Per-worker queue bound
        batch_size: Reconciliation page size
        reconcile_interval: Seconds between periodic reconciliations, 0 disables
    """

    def __init__(
        self,
        local: Store,
        peer: Store,
        local_identity: str,
        peer_identity: str,
        config: Optional[SyncEntityConfig] = None,
        readiness_attempts: int = 10,
        readiness_delay: float = 3.0,
        apply_timeout: float = 5.0,
        workers: int = 4,
        queue_size: int = 1000,
        batch_size: int = 200,
        reconcile_interval: float = 0
    ):
        if local_identity == peer_identity:
            raise ValueError("Local and peer replicator identities must differ")

        self.local = local
        self.peer = peer
        self.config = config or default_entity_config()
        self.reconcile_interval = reconcile_interval
        self.state = SyncState.IDLE

        self.directions: List[Direction] = build_directions(local, peer, local_identity, peer_identity)
        self.pool = DispatchPool(workers, queue_size)
        self.gate = ReadinessGate(peer, required_peer_columns(), readiness_attempts, readiness_delay)
        self.checkpoints = CheckpointStore(local)

        self.appliers: Dict[str, RemoteApplier] = {
            d.name: RemoteApplier(d.name, d.target, d.identity, apply_timeout)
            for d in self.directions
        }
        self.captures: Dict[str, ChangeCapture] = {
            d.name: ChangeCapture(
                d.name,
                d.source,
                LoopGuard(inbound_identity(d, self.directions)),
                self.appliers[d.name],
                self.pool,
                self.config
            )
            for d in self.directions
        }
        self.reconciler = BootstrapReconciler(
            self.directions, self.appliers, self.checkpoints, self.config, batch_size
        )

        self.last_report: Optional[ReconcileReport] = None
        self._reconcile_lock = asyncio.Lock()
        self._enable_lock = asyncio.Lock()
        self._reconcile_task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self.state == SyncState.ENABLED

    async def enable(self, reconcile: bool = True) -> bool:
        """
        Arm live sync once the peer schema is ready.

        Runs the readiness gate, starts the dispatch pool, arms change capture
        for both directions and then runs one bootstrap reconciliation. A
        failed readiness gate disables sync for the lifetime of the engine.

        Args:
            reconcile: Run the bootstrap pass after arming

        Returns:
            True if sync is enabled
        """
        async with self._enable_lock:
            if self.state == SyncState.ENABLED:
                return True
            if self.state != SyncState.IDLE:
                logger.warning(f"Sync cannot be enabled [state={self.state.value}]")
                return False

            try:
                await self.gate.ensure_ready()
            except ReadinessTimeout as e:
                self.state = SyncState.DISABLED
                logger.warning(f"Sync disabled for this process: {e}")
                return False

            await asyncio.to_thread(self.checkpoints.init_schema)
            await self.pool.start()
            for capture in self.captures.values():
                capture.arm()

            self.state = SyncState.ENABLED
            logger.info(
                f"Sync enabled [local={self.local.name}, peer={self.peer.name}, "
                f"contract_version={PEER_CONTRACT_VERSION}]"
            )

        if reconcile:
            try:
                await self.reconcile_all()
            except Exception as e:
                logger.error(f"Initial reconciliation failed: {e}", exc_info=True)

        if self.reconcile_interval > 0:
            self._reconcile_task = asyncio.create_task(self._reconcile_loop())

        return True

    async def reconcile_all(self) -> ReconcileReport:
        """
        Run the bootstrap reconciler over every direction and tracked entity.

        Raises:
            SyncNotEnabledError: If sync is not enabled
        """
        if not self.enabled:
            raise SyncNotEnabledError(f"Sync is not enabled [state={self.state.value}]")

        async with self._reconcile_lock:
            self.last_report = await asyncio.to_thread(self.reconciler.run)
            return self.last_report

    async def shutdown(self, drain: bool = True):
        """Disarm capture and stop the dispatch pool, finishing queued writes first by default."""
        if self._reconcile_task:
            self._reconcile_task.cancel()
            try:
                await self._reconcile_task
            except asyncio.CancelledError:
                pass
            self._reconcile_task = None

        for capture in self.captures.values():
            capture.disarm()

        await self.pool.stop(drain=drain)

        if self.state == SyncState.ENABLED:
            self.state = SyncState.STOPPED
        logger.info("Sync engine stopped")

    async def drain(self):
        """Wait for every dispatched write to finish."""
        await self.pool.drain()

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "contract_version": PEER_CONTRACT_VERSION,
            "directions": [
                {
                    "name": d.name,
                    "source": d.source.name,
                    "target": d.target.name,
                    "identity": d.identity,
                    "armed": self.captures[d.name].armed,
                    "outcomes": dict(self.captures[d.name].outcomes),
                    "entities": self.config.tracked_entities(d.name),
                }
                for d in self.directions
            ],
            "dispatch": self.pool.stats(),
            "last_reconcile": self.last_report.to_dict() if self.last_report else None,
        }

    async def _reconcile_loop(self):
        logger.info(f"Periodic reconciliation started [interval={self.reconcile_interval}s]")
        while self.enabled:
            await asyncio.sleep(self.reconcile_interval)
            try:
                await self.reconcile_all()
            except SyncNotEnabledError:
                return
            except Exception as e:
                logger.error(f"Error in periodic reconciliation: {e}", exc_info=True)
