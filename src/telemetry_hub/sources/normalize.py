from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from telemetry_hub.core.models import CollectedRecord, RecordCategory, Severity

_SEVERITY_ALIASES: dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "crit": Severity.CRITICAL,
    "high": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "med": Severity.MEDIUM,
    "low": Severity.LOW,
    "informational": Severity.INFORMATIONAL,
    "information": Severity.INFORMATIONAL,
    "info": Severity.INFORMATIONAL,
    "none": Severity.INFORMATIONAL,
}
# Vendor numeric scales (5 = most severe).
_SEVERITY_BY_LEVEL: dict[int, Severity] = {
    5: Severity.CRITICAL,
    4: Severity.HIGH,
    3: Severity.MEDIUM,
    2: Severity.LOW,
    1: Severity.INFORMATIONAL,
}

DEFAULT_FIELD_MAP: dict[str, tuple[str, ...]] = {
    "id": ("id", "event_id", "alert_id", "composite_id", "threatId"),
    "category": ("category", "event_type", "type"),
    "severity": ("severity", "severity_name", "priority", "level"),
    "status": ("status", "state"),
    "title": ("title", "name", "subject", "attackType"),
    "description": ("description", "summary", "detail"),
    "occurred_at": ("occurred_at", "created_at", "created_timestamp", "createdDateTime", "datetime", "timestamp"),
}


def pick(row: dict[str, Any], *names: str) -> Any:
    for name in names:
        if name in row and row[name] is not None and str(row[name]).strip():
            return row[name]
    return None


def normalize_severity(value: Any, default: Severity = Severity.MEDIUM) -> Severity:
    if value is None:
        return default
    if isinstance(value, Severity):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _SEVERITY_BY_LEVEL.get(int(value), default)
    raw = str(value).strip().lower()
    if raw.isdigit():
        return _SEVERITY_BY_LEVEL.get(int(raw), default)
    return _SEVERITY_ALIASES.get(raw, default)


def normalize_category(value: Any, default: RecordCategory = RecordCategory.EVENT) -> RecordCategory:
    if value is None:
        return default
    raw = str(value).strip().lower()
    for item in RecordCategory:
        if raw == item.value or raw.endswith(f"_{item.value}"):
            return item
    return default


def parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        # Millisecond epochs are common in vendor APIs.
        if seconds > 1e11:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    raw = str(value).strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def record_from_row(
    row: dict[str, Any],
    *,
    source: str,
    field_map: dict[str, tuple[str, ...]] | None = None,
    default_category: RecordCategory = RecordCategory.EVENT,
) -> CollectedRecord:
    fields = {**DEFAULT_FIELD_MAP, **(field_map or {})}
    record_id = pick(row, *fields["id"])
    if record_id is None:
        raise ValueError("record has no id field")
    occurred_at = parse_timestamp(pick(row, *fields["occurred_at"]))
    if occurred_at is None:
        raise ValueError(f"record '{record_id}' has no parseable timestamp")
    return CollectedRecord(
        id=str(record_id),
        source=source,
        category=normalize_category(pick(row, *fields["category"]), default=default_category),
        severity=normalize_severity(pick(row, *fields["severity"])),
        status=str(pick(row, *fields["status"]) or ""),
        title=str(pick(row, *fields["title"]) or ""),
        description=str(pick(row, *fields["description"]) or ""),
        occurred_at=occurred_at,
        raw=dict(row),
    )


def parse_field_map(raw: Any) -> dict[str, tuple[str, ...]]:
    if not isinstance(raw, dict):
        return {}
    out: dict[str, tuple[str, ...]] = {}
    for key, names in raw.items():
        if key not in DEFAULT_FIELD_MAP:
            continue
        if isinstance(names, str):
            out[key] = (names,)
        elif isinstance(names, (list, tuple)):
            out[key] = tuple(str(x) for x in names)
    return out
