"""Utility helper functions for the replicator."""

from datetime import datetime, timezone


def get_current_timestamp() -> str:
    """
    Get current UTC timestamp in ISO format.

    Returns:
        Current timestamp as ISO format string
    """
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()
