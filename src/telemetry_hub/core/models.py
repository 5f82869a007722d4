from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RecordCategory(str, Enum):
    ALERT = "alert"
    INCIDENT = "incident"
    TICKET = "ticket"
    HOST = "host"
    EVENT = "event"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFORMATIONAL = "informational"


class SourceHealth(str, Enum):
    HEALTHY = "healthy"
    ERROR = "error"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


class RunOutcome(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class DataOrigin(str, Enum):
    CACHE = "cache"
    LIVE = "live"
    PERSISTED = "persisted"


class CollectionWindow(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _validate_range(self) -> "CollectionWindow":
        self.start = _as_utc(self.start)
        self.end = _as_utc(self.end)
        if self.start >= self.end:
            raise ValueError("collection window start must be < end")
        return self

    @classmethod
    def lookback(cls, days: int, now: datetime | None = None) -> "CollectionWindow":
        end = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        return cls(start=end - timedelta(days=max(1, days)), end=end)


class CollectedRecord(BaseModel):
    id: str = Field(..., min_length=1, description="Natural key, unique per source")
    source: str = Field(..., min_length=1)
    category: RecordCategory
    severity: Severity = Severity.MEDIUM
    status: str = ""
    title: str = ""
    description: str = ""
    occurred_at: datetime
    raw: dict[str, Any] = Field(default_factory=dict)

    @field_validator("occurred_at")
    @classmethod
    def _normalize_time(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def identity(self) -> tuple[str, str]:
        return self.source, self.id


class SourceOutcome(BaseModel):
    source: str
    status: RunOutcome
    records_synced: int = Field(default=0, ge=0)
    error: str | None = None
    duration_ms: int = Field(default=0, ge=0)


class SourceRunStatus(BaseModel):
    source: str
    status: SourceHealth = SourceHealth.UNKNOWN
    last_sync_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    records_synced: int = 0


class RunLogEntry(BaseModel):
    id: int
    run_id: str
    source: str
    triggered_by: str
    started_at: datetime
    completed_at: datetime | None = None
    outcome: RunOutcome
    records_synced: int = 0
    error_message: str | None = None
    duration_ms: int | None = None


class RunLogPage(BaseModel):
    items: list[RunLogEntry] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int


class SeverityCounts(BaseModel):
    critical: int = Field(default=0, ge=0)
    high: int = Field(default=0, ge=0)
    medium: int = Field(default=0, ge=0)
    low: int = Field(default=0, ge=0)
    informational: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low + self.informational

    def __add__(self, other: "SeverityCounts") -> "SeverityCounts":
        return SeverityCounts(
            critical=self.critical + other.critical,
            high=self.high + other.high,
            medium=self.medium + other.medium,
            low=self.low + other.low,
            informational=self.informational + other.informational,
        )


class DailyAggregate(BaseModel):
    day: date
    source: str
    metric_set: str = "all"
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    informational: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    updated_at: datetime | None = None

    def severity_counts(self) -> SeverityCounts:
        return SeverityCounts(
            critical=self.critical,
            high=self.high,
            medium=self.medium,
            low=self.low,
            informational=self.informational,
        )


class DateWindow(BaseModel):
    """Half-open day range [start, end)."""

    start: date
    end: date

    @model_validator(mode="after")
    def _validate_range(self) -> "DateWindow":
        if self.start >= self.end:
            raise ValueError("window start must be < end")
        return self

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def label(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


class Trend(BaseModel):
    metric: str
    current: float
    previous: float
    change_percent: float
    direction: TrendDirection
    sparkline: list[float] = Field(default_factory=list)


class CacheEntry(BaseModel):
    key: str
    value: Any = None
    stored_at: datetime
    ttl_seconds: int = Field(default=0, ge=0)


class DataFreshness(BaseModel):
    origin: DataOrigin
    stale: bool = False
    degraded: bool = False
    age_seconds: float | None = None


class TrendReport(BaseModel):
    period_days: int
    source: str | None = None
    current_window: DateWindow
    previous_window: DateWindow
    trends: dict[str, Trend] = Field(default_factory=dict)
    freshness: DataFreshness | None = None


class DashboardSummary(BaseModel):
    period: str
    generated_at: datetime
    window: DateWindow
    security_score: int = Field(ge=0, le=100)
    by_severity: SeverityCounts
    by_category: dict[str, int] = Field(default_factory=dict)
    by_source: dict[str, int] = Field(default_factory=dict)
    total_events: int = 0
    events_trend: Trend
    sources: list[SourceRunStatus] = Field(default_factory=list)
    freshness: DataFreshness | None = None


class SourceSnapshot(BaseModel):
    source: str
    period: str
    generated_at: datetime
    window: DateWindow
    total_events: int = 0
    by_severity: SeverityCounts
    by_status: dict[str, int] = Field(default_factory=dict)
    security_score: int = Field(ge=0, le=100)
    recent_records: list[CollectedRecord] = Field(default_factory=list)
    freshness: DataFreshness | None = None


class RetentionResult(BaseModel):
    cutoff: date
    deleted: dict[str, int] = Field(default_factory=dict)


class ScoreComparison(BaseModel):
    current: int
    previous: int
    direction: TrendDirection


class MonthlyReportSourceItem(BaseModel):
    source: str
    total_events: int
    by_severity: SeverityCounts
    security_score: int
    status: SourceHealth = SourceHealth.UNKNOWN
    last_sync_at: datetime | None = None


class MonthlyReportRequest(BaseModel):
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    write_file: bool = True


class MonthlyReport(BaseModel):
    year: int
    month: int
    generated_at: datetime
    period: DateWindow
    total_events: int
    by_severity: SeverityCounts
    events_trend: Trend
    security_score: ScoreComparison
    sources: list[MonthlyReportSourceItem] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    output_path: str | None = None
