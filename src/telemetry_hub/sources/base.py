from __future__ import annotations

from abc import ABC, abstractmethod

from telemetry_hub.core.models import CollectedRecord, CollectionWindow


class SourceAdapter(ABC):
    name: str

    @abstractmethod
    def is_configured(self) -> bool:
        """
        Return False when credentials or required settings are absent.
        The orchestrator records such a source as skipped and never calls fetch_batch.
        """

    @abstractmethod
    def fetch_batch(self, window: CollectionWindow) -> list[CollectedRecord]:
        """
        Return normalized records observed within the window.
        Raise AdapterFailure (or a subclass) on auth/network/parse errors.
        Implementations own their token caching and must be safe to call repeatedly.
        """

    def describe(self) -> dict[str, object]:
        return {"name": self.name, "type": type(self).__name__, "configured": self.is_configured()}
