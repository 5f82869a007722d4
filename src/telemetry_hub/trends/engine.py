from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

import pandas as pd

from telemetry_hub.core.models import DateWindow, Trend, TrendDirection, TrendReport
from telemetry_hub.storage.telemetry_store import ROLLUP_METRIC_SET, TelemetryStore


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    column: str
    aggregation: str = "sum"


METRICS: dict[str, MetricDefinition] = {
    m.name: m
    for m in (
        MetricDefinition("total_events", "total"),
        MetricDefinition("critical", "critical"),
        MetricDefinition("high", "high"),
        MetricDefinition("medium", "medium"),
        MetricDefinition("low", "low"),
        MetricDefinition("informational", "informational"),
        MetricDefinition("avg_daily_events", "total", "avg"),
        MetricDefinition("avg_daily_critical", "critical", "avg"),
    )
}
DEFAULT_TREND_METRICS = ("total_events", "critical", "high", "medium", "low")


def compute_change(current: float, previous: float) -> tuple[float, TrendDirection]:
    if previous == 0:
        change = 0.0
    else:
        change = round((current - previous) / previous * 100, 1)
    if current > previous:
        direction = TrendDirection.UP
    elif current < previous:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.FLAT
    return change, direction


def windows_for_period(days: int, as_of: date | None = None) -> tuple[DateWindow, DateWindow]:
    """Current window ends after `as_of` (inclusive day); the previous one sits right before it."""
    if days < 1:
        raise ValueError("period must be at least one day")
    anchor = as_of or datetime.now(timezone.utc).date()
    end = anchor + timedelta(days=1)
    start = end - timedelta(days=days)
    current = DateWindow(start=start, end=end)
    previous = DateWindow(start=start - timedelta(days=days), end=start)
    return current, previous


def validate_windows(current: DateWindow, previous: DateWindow) -> None:
    if current.days != previous.days:
        raise ValueError(
            f"windows must have equal length: current={current.days}d previous={previous.days}d"
        )
    if previous.end != current.start:
        raise ValueError(
            f"previous window must end where current starts: {previous.label()} vs {current.label()}"
        )


class TrendEngine:
    def __init__(self, store: TelemetryStore, metrics: dict[str, MetricDefinition] | None = None) -> None:
        self.store = store
        self.metrics = metrics or METRICS

    def metric(self, name: str) -> MetricDefinition:
        definition = self.metrics.get(name)
        if definition is None:
            available = ", ".join(sorted(self.metrics))
            raise ValueError(f"Unknown trend metric '{name}'. Available: {available}")
        return definition

    def daily_frame(
        self,
        window: DateWindow,
        *,
        source: str | None = None,
        metric_set: str = ROLLUP_METRIC_SET,
    ) -> pd.DataFrame:
        """Per-day column totals across the selected sources, one row per day, missing days as zero."""
        columns = sorted({m.column for m in self.metrics.values()})
        rows = self.store.list_daily_aggregates(
            start=window.start,
            end=window.end,
            source=source,
            metric_set=metric_set,
        )
        index = [d.date() for d in pd.date_range(window.start, window.end - timedelta(days=1), freq="D")]
        if not rows:
            return pd.DataFrame(0, index=index, columns=columns)
        frame = pd.DataFrame([{"day": r.day, **{c: getattr(r, c) for c in columns}} for r in rows])
        return frame.groupby("day")[columns].sum().reindex(index).fillna(0)

    def get_trend(
        self,
        metric: str,
        current_window: DateWindow,
        previous_window: DateWindow,
        *,
        source: str | None = None,
        metric_set: str = ROLLUP_METRIC_SET,
    ) -> Trend:
        validate_windows(current_window, previous_window)
        definition = self.metric(metric)
        span = DateWindow(start=previous_window.start, end=current_window.end)
        daily = self.daily_frame(span, source=source, metric_set=metric_set)[definition.column]
        return self._trend_from_series(definition, daily, current_window, previous_window)

    def get_trends(
        self,
        metrics: Iterable[str] = DEFAULT_TREND_METRICS,
        period_days: int = 7,
        *,
        source: str | None = None,
        as_of: date | None = None,
        metric_set: str = ROLLUP_METRIC_SET,
    ) -> TrendReport:
        current, previous = windows_for_period(period_days, as_of)
        definitions = [self.metric(name) for name in metrics]
        frame = self.daily_frame(
            DateWindow(start=previous.start, end=current.end),
            source=source,
            metric_set=metric_set,
        )
        trends = {
            d.name: self._trend_from_series(d, frame[d.column], current, previous)
            for d in definitions
        }
        return TrendReport(
            period_days=period_days,
            source=source,
            current_window=current,
            previous_window=previous,
            trends=trends,
        )

    @staticmethod
    def _trend_from_series(
        definition: MetricDefinition,
        daily: pd.Series,
        current_window: DateWindow,
        previous_window: DateWindow,
    ) -> Trend:
        cur_days = [d for d in daily.index if current_window.start <= d < current_window.end]
        prev_days = [d for d in daily.index if previous_window.start <= d < previous_window.end]
        cur_series = daily.loc[cur_days].astype(float)
        prev_series = daily.loc[prev_days].astype(float)
        if definition.aggregation == "avg":
            current = round(float(cur_series.sum()) / current_window.days, 2)
            previous = round(float(prev_series.sum()) / previous_window.days, 2)
        else:
            current = float(cur_series.sum())
            previous = float(prev_series.sum())
        change, direction = compute_change(current, previous)
        return Trend(
            metric=definition.name,
            current=current,
            previous=previous,
            change_percent=change,
            direction=direction,
            sparkline=[float(v) for v in cur_series.tolist()],
        )
