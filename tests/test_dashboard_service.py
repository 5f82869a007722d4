from __future__ import annotations

import asyncio
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from telemetry_hub.cache.read_through import ReadThroughCache
from telemetry_hub.cache.store import InMemoryCacheStore
from telemetry_hub.collection.orchestrator import CollectionOrchestrator
from telemetry_hub.core.exceptions import AdapterFailure
from telemetry_hub.core.models import (
    CollectedRecord,
    CollectionWindow,
    DataOrigin,
    RecordCategory,
    Severity,
    SourceHealth,
    TrendDirection,
)
from telemetry_hub.dashboard.service import DashboardService, parse_period
from telemetry_hub.sources.base import SourceAdapter
from telemetry_hub.sources.registry import SourceRegistry
from telemetry_hub.storage.telemetry_store import TelemetryStore
from telemetry_hub.trends.engine import TrendEngine

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


def _record(record_id: str, severity: Severity, source: str = "edr") -> CollectedRecord:
    return CollectedRecord(
        id=record_id,
        source=source,
        category=RecordCategory.ALERT,
        severity=severity,
        status="new",
        occurred_at=datetime(2026, 1, 9, 6, 30, tzinfo=timezone.utc),
    )


class SwitchableAdapter(SourceAdapter):
    def __init__(self, name: str, records: list[CollectedRecord]) -> None:
        self.name = name
        self.records = records
        self.configured = True
        self.down = False
        self.calls = 0

    def is_configured(self) -> bool:
        return self.configured

    def fetch_batch(self, window: CollectionWindow) -> list[CollectedRecord]:
        self.calls += 1
        if self.down:
            raise AdapterFailure(f"{self.name}: network error")
        return [r for r in self.records if window.start <= r.occurred_at < window.end]


class NoopExecutor:
    def submit(self, fn, *args):
        return Future()


def _setup(tmp_path: Path, records: list[CollectedRecord]):
    store = TelemetryStore(str(tmp_path / "telemetry.db"))
    adapter = SwitchableAdapter("edr", records)
    registry = SourceRegistry([adapter, SwitchableAdapter("siem", [])])
    asyncio.run(
        CollectionOrchestrator(registry=registry, store=store, clock=lambda: NOW).collect_one("edr")
    )
    cache_store = InMemoryCacheStore(clock=lambda: NOW)
    service = DashboardService(
        store=store,
        registry=registry,
        trends=TrendEngine(store),
        cache=ReadThroughCache(cache_store, executor=NoopExecutor()),
        ttl_seconds=300,
        clock=lambda: NOW,
    )
    return service, adapter, cache_store


def test_parse_period() -> None:
    assert parse_period("24h") == 1
    assert parse_period("90d") == 90
    with pytest.raises(ValueError):
        parse_period("1y")


def test_summary_scores_aggregates_and_caches(tmp_path: Path) -> None:
    records = [_record("c1", Severity.CRITICAL), _record("c2", Severity.CRITICAL), _record("l1", Severity.LOW)]
    service, _, cache_store = _setup(tmp_path, records)

    summary = service.summary("7d")
    assert summary.security_score == 79
    assert summary.total_events == 3
    assert summary.by_severity.critical == 2
    assert summary.by_category == {"alert": 3}
    assert summary.by_source == {"edr": 3}
    assert summary.events_trend.direction == TrendDirection.UP
    assert {s.source: s.status for s in summary.sources} == {
        "edr": SourceHealth.HEALTHY,
        "siem": SourceHealth.UNKNOWN,
    }
    assert summary.freshness.origin == DataOrigin.LIVE
    assert cache_store.get_with_age("summary:7d") is not None

    again = service.summary("7d")
    assert again.freshness.origin == DataOrigin.CACHE
    assert again.security_score == 79


def test_source_snapshot_is_live_when_provider_answers(tmp_path: Path) -> None:
    service, adapter, _ = _setup(tmp_path, [_record("h1", Severity.HIGH), _record("h2", Severity.HIGH)])
    calls_before = adapter.calls

    snapshot = service.source_snapshot("edr", "7d")
    assert adapter.calls == calls_before + 1
    assert snapshot.freshness.origin == DataOrigin.LIVE
    assert snapshot.freshness.degraded is False
    assert snapshot.total_events == 2
    assert snapshot.security_score == 90
    assert snapshot.by_status == {"new": 2}
    assert [r.id for r in snapshot.recent_records] == ["h1", "h2"]


def test_source_snapshot_falls_back_to_persisted_records(tmp_path: Path) -> None:
    service, adapter, _ = _setup(tmp_path, [_record("h1", Severity.HIGH)])
    adapter.down = True

    snapshot = service.source_snapshot("edr", "7d")
    assert snapshot.freshness.origin == DataOrigin.PERSISTED
    assert snapshot.freshness.stale is True
    assert snapshot.freshness.degraded is True
    assert snapshot.total_events == 1
    assert snapshot.security_score == 95


def test_unconfigured_source_snapshot_uses_persisted_data(tmp_path: Path) -> None:
    service, adapter, _ = _setup(tmp_path, [_record("m1", Severity.MEDIUM)])
    adapter.configured = False
    calls_before = adapter.calls

    snapshot = service.source_snapshot("edr", "7d")
    assert adapter.calls == calls_before
    assert snapshot.freshness.degraded is True
    assert snapshot.total_events == 1


def test_unknown_source_and_bad_period_are_rejected(tmp_path: Path) -> None:
    service, _, _ = _setup(tmp_path, [])
    with pytest.raises(KeyError):
        service.source_snapshot("nope")
    with pytest.raises(ValueError):
        service.summary("forever")


def test_trends_report_is_cached_per_source(tmp_path: Path) -> None:
    service, _, cache_store = _setup(tmp_path, [_record("h1", Severity.HIGH)])
    report = service.trends_report("7d", source="EDR")
    assert report.source == "edr"
    assert report.trends["total_events"].current == 1
    assert report.trends["high"].previous == 0
    assert cache_store.get_with_age("trend:7d:edr") is not None


def test_expired_trend_entry_is_served_with_stale_label(tmp_path: Path) -> None:
    service, _, cache_store = _setup(tmp_path, [_record("h1", Severity.HIGH)])
    first = service.trends_report("7d")
    assert first.freshness.origin == DataOrigin.LIVE
    assert first.freshness.stale is False
    assert cache_store.get_with_age("trend:7d:all") is not None

    cache_store.clock = lambda: NOW + timedelta(seconds=900)
    stale = service.trends_report("7d")
    assert stale.freshness.origin == DataOrigin.CACHE
    assert stale.freshness.stale is True
    assert stale.freshness.age_seconds == 900
    assert stale.trends["total_events"].current == 1
