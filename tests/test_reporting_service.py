from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from telemetry_hub.core.models import DailyAggregate, SourceHealth, SourceRunStatus, TrendDirection
from telemetry_hub.reporting.service import ReportingService, month_window, previous_month
from telemetry_hub.sources.file_adapter import JsonFileSourceAdapter
from telemetry_hub.sources.registry import SourceRegistry
from telemetry_hub.storage.telemetry_store import TelemetryStore

NOW = datetime(2026, 1, 1, 3, 0, tzinfo=timezone.utc)


def _service(tmp_path: Path) -> tuple[TelemetryStore, ReportingService]:
    store = TelemetryStore(str(tmp_path / "telemetry.db"))
    registry = SourceRegistry([JsonFileSourceAdapter("edr", {}), JsonFileSourceAdapter("siem", {})])
    service = ReportingService(store=store, registry=registry, output_dir=str(tmp_path / "reports"), clock=lambda: NOW)
    return store, service


def test_month_helpers() -> None:
    assert month_window(2025, 12).start == date(2025, 12, 1)
    assert month_window(2025, 12).end == date(2026, 1, 1)
    assert month_window(2024, 2).days == 29
    assert previous_month(2026, 1) == (2025, 12)
    with pytest.raises(ValueError):
        month_window(2025, 13)


def test_monthly_report_compares_with_previous_month(tmp_path: Path) -> None:
    store, service = _service(tmp_path)
    store.upsert_daily_aggregate(DailyAggregate(day=date(2025, 12, 3), source="edr", total=2, critical=1, high=1))
    store.upsert_daily_aggregate(DailyAggregate(day=date(2025, 12, 20), source="edr", total=1, high=1))
    store.upsert_daily_aggregate(DailyAggregate(day=date(2025, 12, 20), source="siem", total=4, informational=4))
    store.upsert_daily_aggregate(DailyAggregate(day=date(2025, 11, 15), source="edr", total=1, high=1))
    store.upsert_run_status(SourceRunStatus(source="siem", status=SourceHealth.ERROR, last_error="down"))

    report = service.generate_monthly_report(2025, 12)

    assert report.total_events == 7
    assert report.by_severity.critical == 1
    assert report.by_severity.high == 2
    assert report.security_score.current == 80
    assert report.security_score.previous == 95
    assert report.security_score.direction == TrendDirection.DOWN
    assert report.events_trend.change_percent == 600.0
    assert [s.source for s in report.sources] == ["siem", "edr"]
    assert report.sources[0].security_score == 100
    assert report.sources[0].status == SourceHealth.ERROR
    assert any("critical" in r for r in report.recommendations)
    assert any("siem" in r for r in report.recommendations)
    assert len(report.recommendations) <= 5

    assert report.output_path is not None
    assert Path(report.output_path).exists()
    loaded = service.get_monthly_report(2025, 12)
    assert loaded.total_events == 7
    assert loaded.security_score.current == 80


def test_report_without_file_is_not_retrievable(tmp_path: Path) -> None:
    _, service = _service(tmp_path)
    report = service.generate_monthly_report(2025, 11, write_file=False)
    assert report.output_path is None
    assert report.security_score.current == 100
    assert report.events_trend.direction == TrendDirection.FLAT
    with pytest.raises(KeyError):
        service.get_monthly_report(2025, 11)
