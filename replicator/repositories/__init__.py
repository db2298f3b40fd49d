"""Repository layer for tracked tables on both stores."""

from typing import Dict

from common.protocol import LOCAL_TABLES, PEER_TABLES
from replicator.database import Store
from replicator.repositories.tracked_table import TrackedTableRepository


def local_repositories(store: Store) -> Dict[str, TrackedTableRepository]:
    """Repositories for every tracked table of the local (agentpod) store, keyed by entity."""
    return {
        entity: TrackedTableRepository(store, schema, entity)
        for entity, schema in LOCAL_TABLES.items()
    }


def peer_repositories(store: Store) -> Dict[str, TrackedTableRepository]:
    """Repositories for every tracked table of the peer (metamcp) store, keyed by entity."""
    return {
        entity: TrackedTableRepository(store, schema, entity)
        for entity, schema in PEER_TABLES.items()
    }


__all__ = [
    "TrackedTableRepository",
    "local_repositories",
    "peer_repositories",
]
