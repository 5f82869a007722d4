from __future__ import annotations

from collections import Counter
from datetime import datetime, time, timezone
from typing import Callable, Iterable

from telemetry_hub.cache.read_through import ReadResult, ReadThroughCache
from telemetry_hub.cache.store import cache_key
from telemetry_hub.collection.orchestrator import registered_statuses
from telemetry_hub.core.exceptions import NotConfiguredError
from telemetry_hub.core.models import (
    CollectedRecord,
    CollectionWindow,
    DashboardSummary,
    DateWindow,
    RecordCategory,
    SeverityCounts,
    SourceSnapshot,
    TrendReport,
)
from telemetry_hub.scoring.engine import security_score
from telemetry_hub.sources.registry import SourceRegistry
from telemetry_hub.storage.telemetry_store import TelemetryStore
from telemetry_hub.trends.engine import TrendEngine, windows_for_period

PERIODS: dict[str, int] = {"24h": 1, "7d": 7, "30d": 30, "90d": 90}
RECENT_RECORDS_LIMIT = 20
PERSISTED_SCAN_LIMIT = 10000


def parse_period(period: str) -> int:
    days = PERIODS.get(period)
    if days is None:
        raise ValueError(f"Unsupported period '{period}'. Use one of: {', '.join(PERIODS)}")
    return days


def severity_counts(records: Iterable[CollectedRecord]) -> SeverityCounts:
    counter = Counter(r.severity.value for r in records)
    return SeverityCounts(**{key: counter.get(key, 0) for key in SeverityCounts.model_fields})


def _window_bounds(window: DateWindow) -> tuple[datetime, datetime]:
    return (
        datetime.combine(window.start, time.min, tzinfo=timezone.utc),
        datetime.combine(window.end, time.min, tzinfo=timezone.utc),
    )


class DashboardService:
    """Read-side views. Every view goes through the read-through cache."""

    def __init__(
        self,
        store: TelemetryStore,
        registry: SourceRegistry,
        trends: TrendEngine,
        cache: ReadThroughCache,
        *,
        ttl_seconds: int = 300,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.trends = trends
        self.cache = cache
        self.ttl_seconds = max(0, ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def summary(self, period: str = "7d") -> DashboardSummary:
        days = parse_period(period)
        result = self.cache.get_or_compute(
            cache_key("summary", period),
            self.ttl_seconds,
            lambda: self._compute_summary(period, days).model_dump(mode="json"),
        )
        return self._with_freshness(DashboardSummary, result)

    def trends_report(self, period: str = "7d", source: str | None = None) -> TrendReport:
        days = parse_period(period)
        if source is not None:
            source = self.registry.get(source).name
        result = self.cache.get_or_compute(
            cache_key("trend", f"{period}:{source or 'all'}"),
            self.ttl_seconds,
            lambda: self.trends.get_trends(
                period_days=days,
                source=source,
                as_of=self._clock().date(),
            ).model_dump(mode="json"),
        )
        return self._with_freshness(TrendReport, result)

    def source_snapshot(self, source: str, period: str = "7d") -> SourceSnapshot:
        """
        Live view of one source for the period. When the provider is unreachable
        or unconfigured, the view is rebuilt from persisted records and labeled degraded.
        """
        days = parse_period(period)
        adapter = self.registry.get(source)
        window, _ = windows_for_period(days, self._clock().date())

        def live() -> dict:
            if not adapter.is_configured():
                raise NotConfiguredError(f"{adapter.name}: not configured")
            start, end = _window_bounds(window)
            records = adapter.fetch_batch(CollectionWindow(start=start, end=end))
            return self._build_snapshot(adapter.name, period, window, records).model_dump(mode="json")

        def persisted() -> dict:
            start, end = _window_bounds(window)
            records = self.store.list_records(source=adapter.name, start=start, end=end, limit=PERSISTED_SCAN_LIMIT)
            return self._build_snapshot(adapter.name, period, window, records).model_dump(mode="json")

        result = self.cache.get_or_compute(
            cache_key("source", f"{adapter.name}:{period}"),
            self.ttl_seconds,
            live,
            fallback=persisted,
        )
        return self._with_freshness(SourceSnapshot, result)

    def _compute_summary(self, period: str, days: int) -> DashboardSummary:
        current, previous = windows_for_period(days, self._clock().date())
        rows = self.store.list_daily_aggregates(start=current.start, end=current.end)
        by_severity = SeverityCounts()
        by_source: Counter = Counter()
        for row in rows:
            by_severity = by_severity + row.severity_counts()
            by_source[row.source] += row.total

        by_category: dict[str, int] = {}
        for category in RecordCategory:
            cat_rows = self.store.list_daily_aggregates(
                start=current.start,
                end=current.end,
                metric_set=category.value,
            )
            total = sum(r.total for r in cat_rows)
            if total:
                by_category[category.value] = total

        return DashboardSummary(
            period=period,
            generated_at=self._clock(),
            window=current,
            security_score=security_score(by_severity),
            by_severity=by_severity,
            by_category=by_category,
            by_source=dict(sorted(by_source.items())),
            total_events=by_severity.total,
            events_trend=self.trends.get_trend("total_events", current, previous),
            sources=registered_statuses(self.registry, self.store),
        )

    def _build_snapshot(
        self,
        source: str,
        period: str,
        window: DateWindow,
        records: list[CollectedRecord],
    ) -> SourceSnapshot:
        start, end = _window_bounds(window)
        in_window = [r for r in records if start <= r.occurred_at < end]
        counts = severity_counts(in_window)
        by_status = Counter(r.status for r in in_window if r.status)
        recent = sorted(in_window, key=lambda r: r.occurred_at, reverse=True)[:RECENT_RECORDS_LIMIT]
        return SourceSnapshot(
            source=source,
            period=period,
            generated_at=self._clock(),
            window=window,
            total_events=len(in_window),
            by_severity=counts,
            by_status=dict(sorted(by_status.items())),
            security_score=security_score(counts),
            recent_records=recent,
        )

    @staticmethod
    def _with_freshness(model, result: ReadResult):
        view = model.model_validate(result.value)
        return view.model_copy(update={"freshness": result.freshness})
