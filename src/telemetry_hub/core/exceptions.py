from __future__ import annotations


class CollectionError(Exception):
    """Base class for every error raised while collecting from a source."""


class NotConfiguredError(CollectionError):
    """Source credentials are absent. Expected state, reported as a skip."""


class AdapterFailure(CollectionError):
    """Network, auth, rate-limit or parse failure inside a source adapter."""


class TimeoutFailure(AdapterFailure):
    def __init__(self, source: str, timeout_seconds: float) -> None:
        super().__init__(f"{source}: fetch timed out after {timeout_seconds:g}s")
        self.source = source
        self.timeout_seconds = timeout_seconds


class PersistenceFailure(CollectionError):
    def __init__(self, message: str, committed: int = 0) -> None:
        super().__init__(message)
        self.committed = committed
