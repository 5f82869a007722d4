from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from telemetry_hub.core.models import CacheEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(metric_family: str, window: str) -> str:
    return f"{metric_family}:{window}"


@dataclass(frozen=True)
class CacheHit:
    value: Any
    age_seconds: float
    stored_at: datetime
    ttl_seconds: int

    def is_fresh(self, ttl_seconds: int | None = None) -> bool:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        return self.age_seconds <= ttl


class CacheStore(ABC):
    """
    Best-effort key/value store. Entries are never expired here: readers compare
    the entry age against a TTL. Backend errors are logged and behave as a miss.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or _utc_now

    def get_with_age(self, key: str) -> CacheHit | None:
        try:
            entry = self._load(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache get failed for key %s: %s", key, exc)
            return None
        if entry is None:
            return None
        age = max(0.0, (self.clock() - entry.stored_at).total_seconds())
        return CacheHit(value=entry.value, age_seconds=age, stored_at=entry.stored_at, ttl_seconds=entry.ttl_seconds)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        entry = CacheEntry(key=key, value=value, stored_at=self.clock(), ttl_seconds=max(0, int(ttl_seconds)))
        try:
            self._save(entry)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache set failed for key %s: %s", key, exc)

    def invalidate(self, key: str) -> None:
        try:
            self._delete(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache invalidate failed for key %s: %s", key, exc)

    def invalidate_prefix(self, prefix: str) -> int:
        try:
            return self._delete_prefix(prefix)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache invalidate failed for prefix %s: %s", prefix, exc)
            return 0

    @abstractmethod
    def _load(self, key: str) -> CacheEntry | None: ...

    @abstractmethod
    def _save(self, entry: CacheEntry) -> None: ...

    @abstractmethod
    def _delete(self, key: str) -> None: ...

    @abstractmethod
    def _delete_prefix(self, prefix: str) -> int: ...


class InMemoryCacheStore(CacheStore):
    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__(clock=clock)
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _load(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def _save(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry

    def _delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for k in keys:
                del self._entries[k]
        return len(keys)


class SqliteCacheStore(CacheStore):
    def __init__(self, db_path: str, clock: Clock | None = None) -> None:
        super().__init__(clock=clock)
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    cache_key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    stored_at TEXT NOT NULL,
                    ttl_seconds INTEGER NOT NULL
                )
                """
            )

    def _load(self, key: str) -> CacheEntry | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT cache_key, value, stored_at, ttl_seconds FROM cache_entries WHERE cache_key = ? LIMIT 1",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return CacheEntry(
            key=str(row["cache_key"]),
            value=json.loads(str(row["value"])),
            stored_at=datetime.fromisoformat(str(row["stored_at"])),
            ttl_seconds=int(row["ttl_seconds"]),
        )

    def _save(self, entry: CacheEntry) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO cache_entries(cache_key, value, stored_at, ttl_seconds)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    value = excluded.value,
                    stored_at = excluded.stored_at,
                    ttl_seconds = excluded.ttl_seconds
                """,
                (
                    entry.key,
                    json.dumps(entry.value, ensure_ascii=False, default=str),
                    entry.stored_at.isoformat(),
                    entry.ttl_seconds,
                ),
            )

    def _delete(self, key: str) -> None:
        with self._conn() as conn:
            conn.execute("DELETE FROM cache_entries WHERE cache_key = ?", (key,))

    def _delete_prefix(self, prefix: str) -> int:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._conn() as conn:
            cur = conn.execute(
                "DELETE FROM cache_entries WHERE cache_key LIKE ? ESCAPE '\\'",
                (f"{escaped}%",),
            )
            return int(cur.rowcount or 0)
