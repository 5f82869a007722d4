from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable

from telemetry_hub.collection.orchestrator import registered_statuses
from telemetry_hub.core.models import (
    DateWindow,
    MonthlyReport,
    MonthlyReportSourceItem,
    ScoreComparison,
    SeverityCounts,
    SourceHealth,
    Trend,
)
from telemetry_hub.scoring.engine import security_score
from telemetry_hub.sources.registry import SourceRegistry
from telemetry_hub.storage.telemetry_store import TelemetryStore
from telemetry_hub.trends.engine import compute_change

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 5
SCORE_ATTENTION_THRESHOLD = 70
EVENT_GROWTH_THRESHOLD_PERCENT = 20.0


def month_window(year: int, month: int) -> DateWindow:
    if not 1 <= month <= 12:
        raise ValueError(f"month must be within 1..12, got {month}")
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return DateWindow(start=start, end=end)


def previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


class ReportingService:
    def __init__(
        self,
        store: TelemetryStore,
        registry: SourceRegistry,
        output_dir: str = "reports",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def generate_monthly_report(self, year: int, month: int, write_file: bool = True) -> MonthlyReport:
        period = month_window(year, month)
        prev_period = month_window(*previous_month(year, month))

        current_by_source = self._severity_by_source(period)
        previous_by_source = self._severity_by_source(prev_period)
        by_severity = sum(current_by_source.values(), SeverityCounts())
        prev_severity = sum(previous_by_source.values(), SeverityCounts())

        change, direction = compute_change(by_severity.total, prev_severity.total)
        events_trend = Trend(
            metric="total_events",
            current=float(by_severity.total),
            previous=float(prev_severity.total),
            change_percent=change,
            direction=direction,
        )
        current_score = security_score(by_severity)
        previous_score = security_score(prev_severity)
        _, score_direction = compute_change(current_score, previous_score)

        statuses = {s.source: s for s in registered_statuses(self.registry, self.store)}
        sources: list[MonthlyReportSourceItem] = []
        for name in sorted(set(statuses) | set(current_by_source)):
            counts = current_by_source.get(name, SeverityCounts())
            status = statuses.get(name)
            sources.append(
                MonthlyReportSourceItem(
                    source=name,
                    total_events=counts.total,
                    by_severity=counts,
                    security_score=security_score(counts),
                    status=status.status if status else SourceHealth.UNKNOWN,
                    last_sync_at=status.last_sync_at if status else None,
                )
            )
        sources.sort(key=lambda item: (-item.total_events, item.source))

        report = MonthlyReport(
            year=year,
            month=month,
            generated_at=self._clock(),
            period=period,
            total_events=by_severity.total,
            by_severity=by_severity,
            events_trend=events_trend,
            security_score=ScoreComparison(current=current_score, previous=previous_score, direction=score_direction),
            sources=sources,
        )
        report.recommendations = self._recommendations(report)
        if write_file:
            path = self._report_path(year, month)
            report.output_path = str(path)
            path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
            logger.info("Monthly report %04d-%02d written to %s", year, month, path)
        return report

    def get_monthly_report(self, year: int, month: int) -> MonthlyReport:
        _ = month_window(year, month)
        path = self._report_path(year, month)
        if not path.exists():
            raise KeyError(f"monthly report {year:04d}-{month:02d} not found")
        return MonthlyReport.model_validate_json(path.read_text(encoding="utf-8"))

    def _severity_by_source(self, window: DateWindow) -> dict[str, SeverityCounts]:
        out: dict[str, SeverityCounts] = defaultdict(SeverityCounts)
        for row in self.store.list_daily_aggregates(start=window.start, end=window.end):
            out[row.source] = out[row.source] + row.severity_counts()
        return dict(out)

    def _report_path(self, year: int, month: int) -> Path:
        return self.output_dir / f"monthly_report_{year:04d}_{month:02d}.json"

    @staticmethod
    def _recommendations(report: MonthlyReport) -> list[str]:
        recs: list[str] = []
        if report.by_severity.critical > 0:
            recs.append(
                f"Address {report.by_severity.critical} critical security events requiring immediate attention."
            )
        if report.security_score.current < SCORE_ATTENTION_THRESHOLD:
            recs.append(
                f"Security score is {report.security_score.current}/100, below the "
                f"{SCORE_ATTENTION_THRESHOLD}-point threshold. Prioritize high and critical findings."
            )
        if report.events_trend.change_percent > EVENT_GROWTH_THRESHOLD_PERCENT:
            recs.append(
                f"Event volume increased by {report.events_trend.change_percent}% compared to the previous month. "
                "Check whether this reflects new threats or a change in detection coverage."
            )
        failing = [s.source for s in report.sources if s.status == SourceHealth.ERROR]
        if failing:
            recs.append(f"Restore collection for sources in error state: {', '.join(failing)}.")
        unconfigured = [s.source for s in report.sources if s.status == SourceHealth.NOT_CONFIGURED]
        if unconfigured:
            recs.append(f"Configure credentials for sources that are not reporting: {', '.join(unconfigured)}.")
        if report.by_severity.high > 0:
            recs.append(f"Review {report.by_severity.high} high severity events for remediation owners.")
        return recs[:MAX_RECOMMENDATIONS]
