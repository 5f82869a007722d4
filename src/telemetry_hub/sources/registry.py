from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from telemetry_hub.sources.base import SourceAdapter
from telemetry_hub.sources.file_adapter import JsonFileSourceAdapter
from telemetry_hub.sources.http_adapter import HttpJsonSourceAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, dict[str, Any]], SourceAdapter]

ADAPTER_TYPES: dict[str, AdapterFactory] = {
    "file": JsonFileSourceAdapter,
    "http": HttpJsonSourceAdapter,
}


def _normalize_name(name: str) -> str:
    return name.strip().lower()


class SourceRegistry:
    def __init__(self, adapters: Iterable[SourceAdapter] = ()) -> None:
        self._mapping: dict[str, SourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        key = _normalize_name(adapter.name)
        if not key:
            raise ValueError("source adapter name must not be empty")
        if key in self._mapping:
            raise ValueError(f"source '{key}' is already registered")
        self._mapping[key] = adapter

    def get(self, name: str) -> SourceAdapter:
        key = _normalize_name(name)
        if key not in self._mapping:
            available = ", ".join(self._mapping.keys()) or "<none>"
            raise KeyError(f"Source '{name}' not found. Available: {available}")
        return self._mapping[key]

    def __contains__(self, name: str) -> bool:
        return _normalize_name(name) in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    def names(self) -> list[str]:
        return list(self._mapping.keys())

    def adapters(self) -> list[SourceAdapter]:
        return list(self._mapping.values())

    @classmethod
    def from_definitions(cls, definitions: Iterable[dict[str, Any]]) -> "SourceRegistry":
        registry = cls()
        for raw in definitions:
            definition = dict(raw)
            name = _normalize_name(str(definition.pop("name", "")))
            adapter_type = str(definition.pop("type", "")).strip().lower()
            factory = ADAPTER_TYPES.get(adapter_type)
            if not name or factory is None:
                logger.warning("Skip source definition name=%r type=%r: unsupported", name, adapter_type)
                continue
            registry.register(factory(name, definition))
        return registry
