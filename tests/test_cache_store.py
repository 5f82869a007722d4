from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from telemetry_hub.cache.store import CacheStore, InMemoryCacheStore, SqliteCacheStore, cache_key
from telemetry_hub.core.models import CacheEntry


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class BrokenCacheStore(CacheStore):
    def _load(self, key: str) -> CacheEntry | None:
        raise OSError("disk gone")

    def _save(self, entry: CacheEntry) -> None:
        raise OSError("disk gone")

    def _delete(self, key: str) -> None:
        raise OSError("disk gone")

    def _delete_prefix(self, prefix: str) -> int:
        raise OSError("disk gone")


def test_cache_key_format() -> None:
    assert cache_key("summary", "7d") == "summary:7d"


def test_sqlite_cache_reports_age_and_never_expires(tmp_path: Path) -> None:
    clock = MutableClock(datetime(2026, 1, 10, 8, 0, tzinfo=timezone.utc))
    cache = SqliteCacheStore(str(tmp_path / "cache.db"), clock=clock)
    cache.set("summary:7d", {"score": 79, "items": [1, 2]}, ttl_seconds=300)

    clock.now += timedelta(seconds=120)
    hit = cache.get_with_age("summary:7d")
    assert hit is not None
    assert hit.value == {"score": 79, "items": [1, 2]}
    assert hit.age_seconds == 120
    assert hit.is_fresh() is True

    clock.now += timedelta(hours=5)
    stale = cache.get_with_age("summary:7d")
    assert stale is not None
    assert stale.is_fresh() is False
    assert stale.is_fresh(ttl_seconds=86400) is True


def test_sqlite_cache_invalidate_prefix_escapes_like_wildcards(tmp_path: Path) -> None:
    cache = SqliteCacheStore(str(tmp_path / "cache.db"))
    cache.set("summary:7d", 1, 60)
    cache.set("summary:30d", 2, 60)
    cache.set("source:edr:7d", 3, 60)
    cache.set("summaryX", 4, 60)
    cache.set("a_b:1", 5, 60)
    cache.set("axb:1", 6, 60)

    assert cache.invalidate_prefix("summary:") == 2
    assert cache.get_with_age("summary:7d") is None
    assert cache.get_with_age("summaryX") is not None
    assert cache.invalidate_prefix("a_b") == 1
    assert cache.get_with_age("axb:1") is not None

    cache.invalidate("source:edr:7d")
    assert cache.get_with_age("source:edr:7d") is None


def test_memory_cache_overwrites_and_invalidates() -> None:
    cache = InMemoryCacheStore()
    cache.set("trend:7d:all", [1], 60)
    cache.set("trend:7d:all", [2], 60)
    hit = cache.get_with_age("trend:7d:all")
    assert hit is not None
    assert hit.value == [2]
    assert cache.invalidate_prefix("trend:") == 1
    assert cache.get_with_age("trend:7d:all") is None


def test_backend_errors_behave_as_miss_and_noop() -> None:
    cache = BrokenCacheStore()
    assert cache.get_with_age("summary:7d") is None
    cache.set("summary:7d", {"a": 1}, 60)
    cache.invalidate("summary:7d")
    assert cache.invalidate_prefix("summary:") == 0
