"""
Replication core: change capture, translation, loop guard, remote apply,
readiness gate and bootstrap reconciliation between the local and peer stores.
"""

from replicator.replication.change_capture import CaptureOutcome, ChangeCapture
from replicator.replication.dispatch_pool import DispatchPool
from replicator.replication.loop_guard import LoopGuard
from replicator.replication.readiness_gate import ReadinessGate
from replicator.replication.reconciler import BootstrapReconciler, EntityReport, ReconcileReport
from replicator.replication.remote_applier import RemoteApplier
from replicator.replication.sync_engine import SyncEngine, SyncState

__all__ = [
    "BootstrapReconciler",
    "CaptureOutcome",
    "ChangeCapture",
    "DispatchPool",
    "EntityReport",
    "LoopGuard",
    "ReadinessGate",
    "ReconcileReport",
    "RemoteApplier",
    "SyncEngine",
    "SyncState",
]
