from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from telemetry_hub.core.exceptions import AdapterFailure
from telemetry_hub.core.models import CollectedRecord, CollectionWindow
from telemetry_hub.sources.base import SourceAdapter
from telemetry_hub.sources.normalize import normalize_category, parse_field_map, record_from_row

logger = logging.getLogger(__name__)


class JsonFileSourceAdapter(SourceAdapter):
    """Reads a provider export (JSON list or JSONL) dropped on local disk."""

    def __init__(self, name: str, config: dict[str, Any]) -> None:
        self.name = name
        path = str(config.get("file_path", "")).strip()
        self.path = Path(path) if path else None
        self.default_category = normalize_category(config.get("category"))
        self.field_map = parse_field_map(config.get("field_map"))

    def is_configured(self) -> bool:
        return self.path is not None

    def fetch_batch(self, window: CollectionWindow) -> list[CollectedRecord]:
        if self.path is None:
            raise AdapterFailure(f"{self.name}: file_path is not configured")
        if not self.path.exists():
            raise AdapterFailure(f"{self.name}: export file not found: {self.path}")
        try:
            rows = self._load_rows()
        except (OSError, ValueError) as exc:
            raise AdapterFailure(f"{self.name}: unreadable export file: {exc}") from exc

        items: list[CollectedRecord] = []
        for idx, row in enumerate(rows):
            if not isinstance(row, dict):
                continue
            try:
                record = record_from_row(
                    row,
                    source=self.name,
                    field_map=self.field_map,
                    default_category=self.default_category,
                )
            except ValueError as exc:
                logger.warning("Source %s: skip row %s: %s", self.name, idx, exc)
                continue
            if window.start <= record.occurred_at < window.end:
                items.append(record)
        return items

    def _load_rows(self) -> list[Any]:
        text = self.path.read_text(encoding="utf-8")
        if self.path.suffix.lower() == ".jsonl":
            return [json.loads(line) for line in text.splitlines() if line.strip()]
        parsed = json.loads(text)
        if not isinstance(parsed, list):
            raise ValueError("export file must contain a JSON list")
        return parsed
