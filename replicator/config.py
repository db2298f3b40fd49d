"""Configuration settings for the replicator service."""

import os

from common.constants import (
    DEFAULT_APPLY_TIMEOUT_SECONDS,
    DEFAULT_DISPATCH_QUEUE_SIZE,
    DEFAULT_DISPATCH_WORKERS,
    DEFAULT_LOCAL_IDENTITY,
    DEFAULT_PEER_IDENTITY,
    DEFAULT_READINESS_DELAY_SECONDS,
    DEFAULT_READINESS_MAX_ATTEMPTS,
    DEFAULT_RECONCILE_BATCH_SIZE,
)


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


LOCAL_DATABASE_PATH = os.environ.get("SYNC_LOCAL_DATABASE_PATH", "/app/data/agentpod.db")

PEER_DATABASE_PATH = os.environ.get("SYNC_PEER_DATABASE_PATH", "/app/data/metamcp.db")

LOCAL_IDENTITY = os.environ.get("SYNC_LOCAL_IDENTITY", DEFAULT_LOCAL_IDENTITY)

PEER_IDENTITY = os.environ.get("SYNC_PEER_IDENTITY", DEFAULT_PEER_IDENTITY)

READINESS_MAX_ATTEMPTS = int(os.environ.get("SYNC_READINESS_MAX_ATTEMPTS", str(DEFAULT_READINESS_MAX_ATTEMPTS)))

READINESS_DELAY_SECONDS = float(os.environ.get("SYNC_READINESS_DELAY_SECONDS", str(DEFAULT_READINESS_DELAY_SECONDS)))

APPLY_TIMEOUT_SECONDS = float(os.environ.get("SYNC_APPLY_TIMEOUT_SECONDS", str(DEFAULT_APPLY_TIMEOUT_SECONDS)))

DISPATCH_WORKERS = int(os.environ.get("SYNC_DISPATCH_WORKERS", str(DEFAULT_DISPATCH_WORKERS)))

DISPATCH_QUEUE_SIZE = int(os.environ.get("SYNC_DISPATCH_QUEUE_SIZE", str(DEFAULT_DISPATCH_QUEUE_SIZE)))

RECONCILE_BATCH_SIZE = int(os.environ.get("SYNC_RECONCILE_BATCH_SIZE", str(DEFAULT_RECONCILE_BATCH_SIZE)))

# 0 disables the periodic reconciliation loop
RECONCILE_INTERVAL_SECONDS = float(os.environ.get("SYNC_RECONCILE_INTERVAL_SECONDS", "0"))

ENTITY_CONFIG_PATH = os.environ.get("SYNC_ENTITY_CONFIG_PATH")

AUTO_ENABLE = _env_flag("SYNC_AUTO_ENABLE", True)

INIT_SCHEMAS = _env_flag("SYNC_INIT_SCHEMAS", False)

SYNC_HOST = os.environ.get("SYNC_HOST", "0.0.0.0")

SYNC_PORT = int(os.environ.get("SYNC_PORT", "8100"))
