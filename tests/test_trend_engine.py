from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from telemetry_hub.core.models import DailyAggregate, DateWindow, TrendDirection
from telemetry_hub.storage.telemetry_store import TelemetryStore
from telemetry_hub.trends.engine import TrendEngine, compute_change, windows_for_period


def _agg(day: date, source: str = "edr", total: int = 0, critical: int = 0) -> DailyAggregate:
    return DailyAggregate(day=day, source=source, total=total, critical=critical, medium=total - critical)


def _engine(tmp_path: Path) -> tuple[TelemetryStore, TrendEngine]:
    store = TelemetryStore(str(tmp_path / "telemetry.db"))
    return store, TrendEngine(store)


def test_compute_change_halving_is_minus_fifty_down() -> None:
    assert compute_change(50, 100) == (-50.0, TrendDirection.DOWN)


def test_compute_change_from_zero_reports_zero_percent_but_up() -> None:
    assert compute_change(10, 0) == (0.0, TrendDirection.UP)
    assert compute_change(0, 0) == (0.0, TrendDirection.FLAT)


def test_compute_change_rounds_to_one_decimal() -> None:
    change, direction = compute_change(4, 3)
    assert change == 33.3
    assert direction == TrendDirection.UP


def test_windows_for_period_are_adjacent_and_equal() -> None:
    current, previous = windows_for_period(7, date(2026, 1, 14))
    assert current.start == date(2026, 1, 8)
    assert current.end == date(2026, 1, 15)
    assert previous.start == date(2026, 1, 1)
    assert previous.end == current.start
    assert current.days == previous.days == 7


def test_get_trend_sums_windows_and_zero_fills_missing_days(tmp_path: Path) -> None:
    store, engine = _engine(tmp_path)
    store.upsert_daily_aggregate(_agg(date(2026, 1, 2), total=60))
    store.upsert_daily_aggregate(_agg(date(2026, 1, 5), total=40))
    store.upsert_daily_aggregate(_agg(date(2026, 1, 9), total=30))
    store.upsert_daily_aggregate(_agg(date(2026, 1, 9), source="siem", total=20))

    current, previous = windows_for_period(7, date(2026, 1, 14))
    trend = engine.get_trend("total_events", current, previous)

    assert trend.current == 50
    assert trend.previous == 100
    assert trend.change_percent == -50.0
    assert trend.direction == TrendDirection.DOWN
    assert trend.sparkline == [0.0, 50.0, 0.0, 0.0, 0.0, 0.0, 0.0]


def test_get_trend_filters_by_source(tmp_path: Path) -> None:
    store, engine = _engine(tmp_path)
    store.upsert_daily_aggregate(_agg(date(2026, 1, 9), source="edr", total=30))
    store.upsert_daily_aggregate(_agg(date(2026, 1, 9), source="siem", total=20))
    current, previous = windows_for_period(7, date(2026, 1, 14))

    trend = engine.get_trend("total_events", current, previous, source="siem")
    assert trend.current == 20
    assert trend.previous == 0
    assert trend.change_percent == 0
    assert trend.direction == TrendDirection.UP


def test_avg_metric_divides_by_window_days(tmp_path: Path) -> None:
    store, engine = _engine(tmp_path)
    store.upsert_daily_aggregate(_agg(date(2026, 1, 8), total=14))
    current, previous = windows_for_period(7, date(2026, 1, 14))

    trend = engine.get_trend("avg_daily_events", current, previous)
    assert trend.current == 2.0
    assert trend.previous == 0.0


def test_empty_store_gives_flat_zero_trend(tmp_path: Path) -> None:
    _, engine = _engine(tmp_path)
    current, previous = windows_for_period(30, date(2026, 3, 1))
    trend = engine.get_trend("critical", current, previous)
    assert trend.current == trend.previous == 0
    assert trend.direction == TrendDirection.FLAT
    assert len(trend.sparkline) == 30


def test_windows_must_be_equal_and_adjacent(tmp_path: Path) -> None:
    _, engine = _engine(tmp_path)
    current = DateWindow(start=date(2026, 1, 8), end=date(2026, 1, 15))
    with pytest.raises(ValueError):
        engine.get_trend("total_events", current, DateWindow(start=date(2026, 1, 2), end=date(2026, 1, 8)))
    with pytest.raises(ValueError):
        engine.get_trend("total_events", current, DateWindow(start=date(2025, 12, 31), end=date(2026, 1, 7)))


def test_unknown_metric_is_rejected(tmp_path: Path) -> None:
    _, engine = _engine(tmp_path)
    with pytest.raises(ValueError):
        engine.get_trends(["not-a-metric"], period_days=7, as_of=date(2026, 1, 14))


def test_get_trends_reports_several_metrics(tmp_path: Path) -> None:
    store, engine = _engine(tmp_path)
    store.upsert_daily_aggregate(_agg(date(2026, 1, 3), total=4, critical=2))
    store.upsert_daily_aggregate(_agg(date(2026, 1, 10), total=8, critical=1))

    report = engine.get_trends(["total_events", "critical"], period_days=7, as_of=date(2026, 1, 14))
    assert report.period_days == 7
    assert report.trends["total_events"].change_percent == 100.0
    assert report.trends["critical"].direction == TrendDirection.DOWN
    assert report.trends["critical"].change_percent == -50.0
