"""Custom exception classes for the replicator."""


class SyncError(Exception):
    """
    Base exception class for all replication errors.
    """
    pass


class ReadinessTimeout(SyncError):
    """
    Raised when the peer schema did not become available within the retry budget.
    """

    def __init__(self, attempts: int, missing: list):
        self.attempts = attempts
        self.missing = missing
        super().__init__(
            f"Peer schema not ready after {attempts} attempts (missing: {', '.join(missing) or 'unknown'})"
        )


class TranslationError(SyncError):
    """
    Raised when a field has an unexpected shape or enum value.

    Never escapes the translation layer: the field falls back to its default.
    """
    pass


class RemoteApplyError(SyncError):
    """
    Raised when a write against the peer store fails (unreachable, constraint, timeout).

    Never escapes the Remote Applier.
    """

    def __init__(self, direction: str, entity: str, key: str, reason: str):
        self.direction = direction
        self.entity = entity
        self.key = key
        self.reason = reason
        super().__init__(f"{direction} {entity} {key}: {reason}")


class SyncNotEnabledError(SyncError):
    """
    Raised when an administrative operation needs sync to be enabled first.
    """
    pass
