"""
Replication loop guard.

Each direction writes into its target store under its own identity. A
capture reading that same store must then ignore events carrying the
identity of the direction that writes into it, otherwise a mirrored row
would bounce straight back to where it came from.
"""

from common.types import ChangeEvent


class LoopGuard:
    """
    Classifies change events on one store as application writes or mirrors.

    Args:
        inbound_identity: Identity of the direction whose target is this store
    """

    def __init__(self, inbound_identity: str):
        self.inbound_identity = inbound_identity

    def is_replicated(self, event: ChangeEvent) -> bool:
        return event.origin is not None and event.origin == self.inbound_identity

    def __repr__(self) -> str:
        return f"LoopGuard(inbound_identity={self.inbound_identity!r})"
