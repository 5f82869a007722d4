from __future__ import annotations

import json
import sqlite3
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable

from telemetry_hub.core.models import (
    CollectedRecord,
    DailyAggregate,
    RecordCategory,
    RetentionResult,
    RunLogEntry,
    RunLogPage,
    RunOutcome,
    Severity,
    SourceHealth,
    SourceRunStatus,
)

ROLLUP_METRIC_SET = "all"
_SEVERITY_COLUMNS = ("critical", "high", "medium", "low", "informational")


def _to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc).isoformat()
    return dt.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class TelemetryStore:
    """
    Durable store for collected records, daily aggregates, per-source run status
    and the run log. Every write is keyed by natural identifiers so repeating it
    is harmless.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS collected_records (
                    source TEXT NOT NULL,
                    record_id TEXT NOT NULL,
                    category TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    status TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    raw TEXT NOT NULL,
                    first_seen_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(source, record_id)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_collected_records_source_time
                ON collected_records(source, occurred_at)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS daily_aggregates (
                    day TEXT NOT NULL,
                    source TEXT NOT NULL,
                    metric_set TEXT NOT NULL,
                    total INTEGER NOT NULL,
                    critical INTEGER NOT NULL,
                    high INTEGER NOT NULL,
                    medium INTEGER NOT NULL,
                    low INTEGER NOT NULL,
                    informational INTEGER NOT NULL,
                    by_status TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(day, source, metric_set)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_daily_aggregates_lookup
                ON daily_aggregates(metric_set, day, source)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS source_run_status (
                    source TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    last_sync_at TEXT,
                    last_success_at TEXT,
                    last_error TEXT,
                    records_synced INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS run_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL UNIQUE,
                    source TEXT NOT NULL,
                    triggered_by TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    outcome TEXT NOT NULL,
                    records_synced INTEGER NOT NULL,
                    error_message TEXT,
                    duration_ms INTEGER
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_run_logs_source_time ON run_logs(source, started_at DESC)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_run_logs_started_at ON run_logs(started_at DESC)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS data_retention_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_at TEXT NOT NULL,
                    table_name TEXT NOT NULL,
                    records_deleted INTEGER NOT NULL,
                    cutoff TEXT NOT NULL
                )
                """
            )

    def ping(self) -> bool:
        with self._conn() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # Collected records

    def upsert_records(self, records: Iterable[CollectedRecord]) -> int:
        """Write the given records in one transaction: all of them land or none do."""
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (
                r.source,
                r.id,
                r.category.value,
                r.severity.value,
                r.status,
                r.title,
                r.description,
                _to_iso(r.occurred_at),
                json.dumps(r.raw, ensure_ascii=False, default=str),
                now,
                now,
            )
            for r in records
        ]
        if not rows:
            return 0
        with self._conn() as conn:
            conn.executemany(
                """
                INSERT INTO collected_records(
                    source, record_id, category, severity, status, title, description,
                    occurred_at, raw, first_seen_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(source, record_id) DO UPDATE SET
                    category = excluded.category,
                    severity = excluded.severity,
                    status = excluded.status,
                    title = excluded.title,
                    description = excluded.description,
                    occurred_at = excluded.occurred_at,
                    raw = excluded.raw,
                    updated_at = excluded.updated_at
                """,
                rows,
            )
        return len(rows)

    def stored_days(self, source: str, record_ids: Iterable[str]) -> set[date]:
        """UTC days the given records currently sit on, so a moved record can be un-counted."""
        ids = sorted(set(record_ids))
        if not ids:
            return set()
        days: set[date] = set()
        with self._conn() as conn:
            for offset in range(0, len(ids), 500):
                part = ids[offset : offset + 500]
                placeholders = ",".join("?" for _ in part)
                rows = conn.execute(
                    f"""
                    SELECT DISTINCT substr(occurred_at, 1, 10) AS day
                    FROM collected_records
                    WHERE source = ? AND record_id IN ({placeholders})
                    """,
                    (source, *part),
                ).fetchall()
                days.update(date.fromisoformat(str(row["day"])) for row in rows)
        return days

    def get_record(self, source: str, record_id: str) -> CollectedRecord | None:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT source, record_id, category, severity, status, title, description, occurred_at, raw
                FROM collected_records
                WHERE source = ? AND record_id = ?
                LIMIT 1
                """,
                (source, record_id),
            ).fetchone()
        return self._to_record(row) if row else None

    def list_records(
        self,
        *,
        source: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        severity: Severity | None = None,
        limit: int = 200,
    ) -> list[CollectedRecord]:
        sql = """
            SELECT source, record_id, category, severity, status, title, description, occurred_at, raw
            FROM collected_records
        """
        conditions: list[str] = []
        params: list[str | int] = []
        if source is not None:
            conditions.append("source = ?")
            params.append(source)
        if start is not None:
            conditions.append("occurred_at >= ?")
            params.append(_to_iso(start))
        if end is not None:
            conditions.append("occurred_at < ?")
            params.append(_to_iso(end))
        if severity is not None:
            conditions.append("severity = ?")
            params.append(severity.value)
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY occurred_at DESC, record_id ASC LIMIT ?"
        params.append(max(1, min(limit, 10000)))
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._to_record(row) for row in rows]

    def count_records(self, source: str | None = None) -> int:
        sql = "SELECT COUNT(1) AS cnt FROM collected_records"
        params: list[str] = []
        if source is not None:
            sql += " WHERE source = ?"
            params.append(source)
        with self._conn() as conn:
            row = conn.execute(sql, params).fetchone()
        return int(row["cnt"] or 0) if row else 0

    # Daily aggregates

    def recompute_daily_aggregates(self, source: str, days: Iterable[date]) -> list[DailyAggregate]:
        """
        Rebuild the aggregate rows of one source for the given UTC days from the
        stored records. Metric sets are the record categories plus the roll-up set.
        """
        target_days = sorted(set(days))
        if not target_days:
            return []
        now = datetime.now(timezone.utc)
        out: list[DailyAggregate] = []
        with self._conn() as conn:
            for day in target_days:
                rows = conn.execute(
                    """
                    SELECT category, severity, status, COUNT(1) AS cnt
                    FROM collected_records
                    WHERE source = ? AND substr(occurred_at, 1, 10) = ?
                    GROUP BY category, severity, status
                    """,
                    (source, day.isoformat()),
                ).fetchall()
                severity_by_set: dict[str, Counter] = defaultdict(Counter)
                status_by_set: dict[str, Counter] = defaultdict(Counter)
                for row in rows:
                    cnt = int(row["cnt"])
                    for metric_set in (str(row["category"]), ROLLUP_METRIC_SET):
                        severity_by_set[metric_set][str(row["severity"])] += cnt
                        if row["status"]:
                            status_by_set[metric_set][str(row["status"])] += cnt

                conn.execute(
                    "DELETE FROM daily_aggregates WHERE source = ? AND day = ?",
                    (source, day.isoformat()),
                )
                for metric_set, severities in severity_by_set.items():
                    agg = DailyAggregate(
                        day=day,
                        source=source,
                        metric_set=metric_set,
                        total=sum(severities.values()),
                        by_status=dict(status_by_set[metric_set]),
                        updated_at=now,
                        **{col: int(severities.get(col, 0)) for col in _SEVERITY_COLUMNS},
                    )
                    self._write_aggregate(conn, agg)
                    out.append(agg)
        return out

    def upsert_daily_aggregate(self, agg: DailyAggregate) -> None:
        with self._conn() as conn:
            self._write_aggregate(conn, agg)

    @staticmethod
    def _write_aggregate(conn: sqlite3.Connection, agg: DailyAggregate) -> None:
        conn.execute(
            """
            INSERT INTO daily_aggregates(
                day, source, metric_set, total, critical, high, medium, low, informational, by_status, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(day, source, metric_set) DO UPDATE SET
                total = excluded.total,
                critical = excluded.critical,
                high = excluded.high,
                medium = excluded.medium,
                low = excluded.low,
                informational = excluded.informational,
                by_status = excluded.by_status,
                updated_at = excluded.updated_at
            """,
            (
                agg.day.isoformat(),
                agg.source,
                agg.metric_set,
                agg.total,
                agg.critical,
                agg.high,
                agg.medium,
                agg.low,
                agg.informational,
                json.dumps(agg.by_status, ensure_ascii=False, sort_keys=True),
                _to_iso(agg.updated_at or datetime.now(timezone.utc)),
            ),
        )

    def list_daily_aggregates(
        self,
        *,
        start: date,
        end: date,
        source: str | None = None,
        metric_set: str = ROLLUP_METRIC_SET,
    ) -> list[DailyAggregate]:
        """Rows with start <= day < end."""
        sql = """
            SELECT day, source, metric_set, total, critical, high, medium, low, informational, by_status, updated_at
            FROM daily_aggregates
            WHERE metric_set = ? AND day >= ? AND day < ?
        """
        params: list[str] = [metric_set, start.isoformat(), end.isoformat()]
        if source is not None:
            sql += " AND source = ?"
            params.append(source)
        sql += " ORDER BY day ASC, source ASC"
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._to_aggregate(row) for row in rows]

    def list_metric_sets(self, source: str | None = None) -> list[str]:
        sql = "SELECT DISTINCT metric_set FROM daily_aggregates"
        params: list[str] = []
        if source is not None:
            sql += " WHERE source = ?"
            params.append(source)
        sql += " ORDER BY metric_set"
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [str(row["metric_set"]) for row in rows]

    # Source run status

    def upsert_run_status(self, status: SourceRunStatus) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO source_run_status(
                    source, status, last_sync_at, last_success_at, last_error, records_synced, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(source) DO UPDATE SET
                    status = excluded.status,
                    last_sync_at = excluded.last_sync_at,
                    last_success_at = COALESCE(excluded.last_success_at, source_run_status.last_success_at),
                    last_error = excluded.last_error,
                    records_synced = excluded.records_synced,
                    updated_at = excluded.updated_at
                """,
                (
                    status.source,
                    status.status.value,
                    _to_iso(status.last_sync_at),
                    _to_iso(status.last_success_at),
                    status.last_error,
                    status.records_synced,
                    now,
                ),
            )

    def get_run_status(self, source: str) -> SourceRunStatus | None:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT source, status, last_sync_at, last_success_at, last_error, records_synced
                FROM source_run_status
                WHERE source = ?
                LIMIT 1
                """,
                (source,),
            ).fetchone()
        return self._to_status(row) if row else None

    def list_run_statuses(self) -> list[SourceRunStatus]:
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT source, status, last_sync_at, last_success_at, last_error, records_synced
                FROM source_run_status
                ORDER BY source ASC
                """
            ).fetchall()
        return [self._to_status(row) for row in rows]

    # Run log

    def start_run_log(self, *, run_id: str, source: str, triggered_by: str, started_at: datetime) -> int:
        with self._conn() as conn:
            cur = conn.execute(
                """
                INSERT INTO run_logs(
                    run_id, source, triggered_by, started_at, completed_at, outcome,
                    records_synced, error_message, duration_ms
                )
                VALUES (?, ?, ?, ?, NULL, ?, 0, NULL, NULL)
                """,
                (run_id, source, triggered_by, _to_iso(started_at), RunOutcome.RUNNING.value),
            )
            return int(cur.lastrowid)

    def finish_run_log(
        self,
        *,
        run_id: str,
        outcome: RunOutcome,
        records_synced: int,
        error_message: str | None,
        completed_at: datetime,
        duration_ms: int,
    ) -> bool:
        """Finalize a pending entry. Entries that already have completed_at are left untouched."""
        with self._conn() as conn:
            cur = conn.execute(
                """
                UPDATE run_logs
                SET completed_at = ?, outcome = ?, records_synced = ?, error_message = ?, duration_ms = ?
                WHERE run_id = ? AND completed_at IS NULL
                """,
                (_to_iso(completed_at), outcome.value, records_synced, error_message, duration_ms, run_id),
            )
            return int(cur.rowcount or 0) == 1

    def get_run_log(self, run_id: str) -> RunLogEntry | None:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT id, run_id, source, triggered_by, started_at, completed_at, outcome,
                       records_synced, error_message, duration_ms
                FROM run_logs
                WHERE run_id = ?
                LIMIT 1
                """,
                (run_id,),
            ).fetchone()
        return self._to_run_log(row) if row else None

    def list_run_logs(self, *, source: str | None = None, limit: int = 50, offset: int = 0) -> RunLogPage:
        limit = max(1, min(limit, 500))
        offset = max(0, offset)
        where = ""
        params: list[str | int] = []
        if source is not None:
            where = " WHERE source = ?"
            params.append(source)
        with self._conn() as conn:
            total_row = conn.execute(f"SELECT COUNT(1) AS cnt FROM run_logs{where}", params).fetchone()
            rows = conn.execute(
                f"""
                SELECT id, run_id, source, triggered_by, started_at, completed_at, outcome,
                       records_synced, error_message, duration_ms
                FROM run_logs{where}
                ORDER BY started_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                [*params, limit, offset],
            ).fetchall()
        return RunLogPage(
            items=[self._to_run_log(row) for row in rows],
            total=int(total_row["cnt"] or 0) if total_row else 0,
            limit=limit,
            offset=offset,
        )

    # Retention

    def purge_before(self, cutoff: date) -> RetentionResult:
        cutoff_text = cutoff.isoformat()
        targets = (
            ("collected_records", "occurred_at"),
            ("daily_aggregates", "day"),
            ("run_logs", "started_at"),
        )
        deleted: dict[str, int] = {}
        now = datetime.now(timezone.utc).isoformat()
        with self._conn() as conn:
            for table_name, date_col in targets:
                extra = " AND completed_at IS NOT NULL" if table_name == "run_logs" else ""
                cur = conn.execute(f"DELETE FROM {table_name} WHERE {date_col} < ?{extra}", (cutoff_text,))
                count = int(cur.rowcount or 0)
                deleted[table_name] = count
                if count > 0:
                    conn.execute(
                        """
                        INSERT INTO data_retention_log(run_at, table_name, records_deleted, cutoff)
                        VALUES (?, ?, ?, ?)
                        """,
                        (now, table_name, count, cutoff_text),
                    )
        return RetentionResult(cutoff=cutoff, deleted=deleted)

    def retention_cutoff(self, retention_days: int, today: date | None = None) -> date:
        base = today or datetime.now(timezone.utc).date()
        return base - timedelta(days=max(1, retention_days))

    # Row mapping

    def _to_record(self, row: sqlite3.Row) -> CollectedRecord:
        return CollectedRecord(
            id=str(row["record_id"]),
            source=str(row["source"]),
            category=RecordCategory(str(row["category"])),
            severity=Severity(str(row["severity"])),
            status=str(row["status"]),
            title=str(row["title"]),
            description=str(row["description"]),
            occurred_at=datetime.fromisoformat(str(row["occurred_at"])),
            raw=dict(json.loads(str(row["raw"]))),
        )

    def _to_aggregate(self, row: sqlite3.Row) -> DailyAggregate:
        return DailyAggregate(
            day=date.fromisoformat(str(row["day"])),
            source=str(row["source"]),
            metric_set=str(row["metric_set"]),
            total=int(row["total"]),
            critical=int(row["critical"]),
            high=int(row["high"]),
            medium=int(row["medium"]),
            low=int(row["low"]),
            informational=int(row["informational"]),
            by_status={str(k): int(v) for k, v in json.loads(str(row["by_status"])).items()},
            updated_at=_from_iso(row["updated_at"]),
        )

    def _to_status(self, row: sqlite3.Row) -> SourceRunStatus:
        return SourceRunStatus(
            source=str(row["source"]),
            status=SourceHealth(str(row["status"])),
            last_sync_at=_from_iso(row["last_sync_at"]),
            last_success_at=_from_iso(row["last_success_at"]),
            last_error=str(row["last_error"]) if row["last_error"] else None,
            records_synced=int(row["records_synced"] or 0),
        )

    def _to_run_log(self, row: sqlite3.Row) -> RunLogEntry:
        return RunLogEntry(
            id=int(row["id"]),
            run_id=str(row["run_id"]),
            source=str(row["source"]),
            triggered_by=str(row["triggered_by"]),
            started_at=datetime.fromisoformat(str(row["started_at"])),
            completed_at=_from_iso(row["completed_at"]),
            outcome=RunOutcome(str(row["outcome"])),
            records_synced=int(row["records_synced"] or 0),
            error_message=str(row["error_message"]) if row["error_message"] else None,
            duration_ms=int(row["duration_ms"]) if row["duration_ms"] is not None else None,
        )
