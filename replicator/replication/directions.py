"""Replication directions between the local and peer stores."""

from dataclasses import dataclass
from typing import List

from common.constants import DIRECTION_FORWARD, DIRECTION_REVERSE
from common.types import ApplyAction
from replicator.database import Store


@dataclass(frozen=True)
class Direction:
    """
    One replication direction.

    Attributes:
        name: Direction name, e.g. "agentpod->metamcp"
        source: Store whose writes are captured
        target: Store the direction writes into
        identity: Origin stamped on every write into the target
        bootstrap_action: How reconciliation writes pre-existing rows
    """
    name: str
    source: Store
    target: Store
    identity: str
    bootstrap_action: ApplyAction = ApplyAction.UPSERT


def build_directions(local: Store, peer: Store, local_identity: str, peer_identity: str) -> List[Direction]:
    """
    The local store is authoritative: it fully overwrites the peer on
    bootstrap, while the peer only fills in rows the local store lacks.
    """
    return [
        Direction(DIRECTION_FORWARD, local, peer, local_identity, ApplyAction.UPSERT),
        Direction(DIRECTION_REVERSE, peer, local, peer_identity, ApplyAction.INSERT_IF_MISSING),
    ]


def inbound_identity(direction: Direction, directions: List[Direction]) -> str:
    """
    Identity of the direction that writes into ``direction.source``.

    Raises:
        ValueError: If no direction targets that store
    """
    for other in directions:
        if other.target is direction.source:
            return other.identity
    raise ValueError(f"No direction writes into {direction.source.name}")
