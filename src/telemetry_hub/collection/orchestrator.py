from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable
from uuid import uuid4

from telemetry_hub.cache.store import CacheStore
from telemetry_hub.core.exceptions import (
    CollectionError,
    NotConfiguredError,
    PersistenceFailure,
    TimeoutFailure,
)
from telemetry_hub.core.models import (
    CollectedRecord,
    CollectionWindow,
    RetentionResult,
    RunLogPage,
    RunOutcome,
    SourceHealth,
    SourceOutcome,
    SourceRunStatus,
)
from telemetry_hub.sources.base import SourceAdapter
from telemetry_hub.sources.registry import SourceRegistry
from telemetry_hub.storage.telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)

READ_CACHE_PREFIXES = ("summary:", "trend:", "source:")


def registered_statuses(registry: SourceRegistry, store: TelemetryStore) -> list[SourceRunStatus]:
    """Status of every registered source; sources that never ran report `unknown`."""
    stored = {s.source: s for s in store.list_run_statuses()}
    return [stored.get(name) or SourceRunStatus(source=name) for name in registry.names()]


def dedupe_by_identity(records: Iterable[CollectedRecord]) -> list[CollectedRecord]:
    """Keep one record per (source, id); the last occurrence wins."""
    latest: dict[tuple[str, str], CollectedRecord] = {}
    for record in records:
        latest[record.identity] = record
    return list(latest.values())


class CollectionOrchestrator:
    """
    Fans out one collection task per registered source and waits for all of them.

    Each task runs start-log -> configured check -> fetch (bounded by a timeout)
    -> dedupe -> chunked upsert -> aggregate recompute -> finish-log -> status.
    Any error inside a task becomes that source's outcome; other sources are
    never affected.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        store: TelemetryStore,
        cache: CacheStore | None = None,
        *,
        timeout_seconds: float = 60.0,
        chunk_size: int = 100,
        lookback_days: int = 7,
        retention_days: int = 90,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.cache = cache
        self.timeout_seconds = max(0.001, float(timeout_seconds))
        self.chunk_size = max(1, int(chunk_size))
        self.lookback_days = max(1, int(lookback_days))
        self.retention_days = max(1, int(retention_days))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def collect_all(self, triggered_by: str = "manual") -> list[SourceOutcome]:
        adapters = self.registry.adapters()
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(self._run_isolated(adapter, triggered_by)) for adapter in adapters]
        outcomes = [task.result() for task in tasks]

        self.invalidate_read_cache()
        await asyncio.to_thread(self.cleanup_retention)

        counts = {status: sum(1 for o in outcomes if o.status == status) for status in RunOutcome}
        logger.info(
            "Collection finished trigger=%s sources=%d success=%d failed=%d skipped=%d",
            triggered_by,
            len(outcomes),
            counts[RunOutcome.SUCCESS],
            counts[RunOutcome.FAILED],
            counts[RunOutcome.SKIPPED],
        )
        return outcomes

    async def collect_one(self, source: str, triggered_by: str = "manual") -> SourceOutcome:
        adapter = self.registry.get(source)
        outcome = await self._run_source(adapter, triggered_by)
        if outcome.status == RunOutcome.SUCCESS:
            self.invalidate_read_cache()
        return outcome

    def source_statuses(self) -> list[SourceRunStatus]:
        return registered_statuses(self.registry, self.store)

    def run_history(self, source: str | None = None, limit: int = 50, offset: int = 0) -> RunLogPage:
        if source is not None:
            source = self.registry.get(source).name
        return self.store.list_run_logs(source=source, limit=limit, offset=offset)

    def invalidate_read_cache(self) -> int:
        if self.cache is None:
            return 0
        return sum(self.cache.invalidate_prefix(prefix) for prefix in READ_CACHE_PREFIXES)

    def cleanup_retention(self) -> RetentionResult | None:
        cutoff = self.store.retention_cutoff(self.retention_days, today=self._clock().date())
        try:
            result = self.store.purge_before(cutoff)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Retention cleanup before %s failed: %s", cutoff.isoformat(), exc)
            return None
        if any(result.deleted.values()):
            logger.info("Retention cleanup before %s deleted %s", cutoff.isoformat(), result.deleted)
        return result

    async def _run_isolated(self, adapter: SourceAdapter, triggered_by: str) -> SourceOutcome:
        try:
            return await self._run_source(adapter, triggered_by)
        except Exception as exc:  # noqa: BLE001
            logger.error("Collection task for %s could not record its outcome: %s", adapter.name, exc)
            return SourceOutcome(source=adapter.name, status=RunOutcome.FAILED, error=str(exc) or type(exc).__name__)

    async def _run_source(self, adapter: SourceAdapter, triggered_by: str) -> SourceOutcome:
        name = adapter.name
        run_id = uuid4().hex
        started_at = self._clock()
        t0 = time.perf_counter()
        log_started = await self._start_run_log(run_id, name, triggered_by, started_at)

        status = RunOutcome.SUCCESS
        health = SourceHealth.HEALTHY
        synced = 0
        error: str | None = None
        try:
            if not adapter.is_configured():
                raise NotConfiguredError(f"{name}: not configured")
            synced = await self._collect(adapter)
        except NotConfiguredError as exc:
            status = RunOutcome.SKIPPED
            health = SourceHealth.NOT_CONFIGURED
            error = str(exc)
        except PersistenceFailure as exc:
            status = RunOutcome.FAILED
            health = SourceHealth.ERROR
            synced = exc.committed
            error = str(exc)
        except CollectionError as exc:
            status = RunOutcome.FAILED
            health = SourceHealth.ERROR
            error = str(exc)
        except Exception as exc:  # noqa: BLE001
            status = RunOutcome.FAILED
            health = SourceHealth.ERROR
            error = f"{type(exc).__name__}: {exc}"

        completed_at = self._clock()
        duration_ms = int((time.perf_counter() - t0) * 1000)
        if log_started:
            await self._finish_run_log(run_id, status, synced, error, completed_at, duration_ms)

        run_status = SourceRunStatus(
            source=name,
            status=health,
            last_sync_at=completed_at,
            last_success_at=completed_at if status == RunOutcome.SUCCESS else None,
            last_error=error if status == RunOutcome.FAILED else None,
            records_synced=synced,
        )
        try:
            await asyncio.to_thread(self.store.upsert_run_status, run_status)
        except Exception as exc:  # noqa: BLE001
            raise PersistenceFailure(f"{name}: status update failed: {exc}", committed=synced) from exc

        if status == RunOutcome.FAILED:
            logger.warning("Source %s failed after %dms: %s", name, duration_ms, error)
        elif status == RunOutcome.SKIPPED:
            logger.info("Source %s skipped: not configured", name)
        else:
            logger.info("Source %s synced %d records in %dms", name, synced, duration_ms)
        return SourceOutcome(source=name, status=status, records_synced=synced, error=error, duration_ms=duration_ms)

    async def _collect(self, adapter: SourceAdapter) -> int:
        name = adapter.name
        window = CollectionWindow.lookback(self.lookback_days, now=self._clock())
        try:
            fetched = await asyncio.wait_for(
                asyncio.to_thread(adapter.fetch_batch, window),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as exc:
            raise TimeoutFailure(name, self.timeout_seconds) from exc

        batch = dedupe_by_identity(self._own_records(name, fetched))
        if not batch:
            return 0

        committed = 0
        days = {record.occurred_at.date() for record in batch}
        for offset in range(0, len(batch), self.chunk_size):
            chunk = batch[offset : offset + self.chunk_size]
            try:
                days |= await asyncio.to_thread(self.store.stored_days, name, [r.id for r in chunk])
                await asyncio.to_thread(self.store.upsert_records, chunk)
            except Exception as exc:  # noqa: BLE001
                raise PersistenceFailure(
                    f"{name}: record upsert failed after {committed} of {len(batch)} records: {exc}",
                    committed=committed,
                ) from exc
            committed += len(chunk)

        try:
            await asyncio.to_thread(self.store.recompute_daily_aggregates, name, days)
        except Exception as exc:  # noqa: BLE001
            raise PersistenceFailure(f"{name}: aggregate recompute failed: {exc}", committed=committed) from exc
        return committed

    @staticmethod
    def _own_records(name: str, records: Iterable[CollectedRecord]) -> list[CollectedRecord]:
        out: list[CollectedRecord] = []
        foreign = 0
        for record in records:
            if record.source != name:
                foreign += 1
                record = record.model_copy(update={"source": name})
            out.append(record)
        if foreign:
            logger.warning("Source %s returned %d records labeled with another source; relabeled", name, foreign)
        return out

    async def _start_run_log(self, run_id: str, source: str, triggered_by: str, started_at: datetime) -> bool:
        try:
            await asyncio.to_thread(
                self.store.start_run_log,
                run_id=run_id,
                source=source,
                triggered_by=triggered_by,
                started_at=started_at,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Run log start failed for %s: %s", source, exc)
            return False
        return True

    async def _finish_run_log(
        self,
        run_id: str,
        outcome: RunOutcome,
        records_synced: int,
        error: str | None,
        completed_at: datetime,
        duration_ms: int,
    ) -> None:
        try:
            await asyncio.to_thread(
                self.store.finish_run_log,
                run_id=run_id,
                outcome=outcome,
                records_synced=records_synced,
                error_message=error,
                completed_at=completed_at,
                duration_ms=duration_ms,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Run log finish failed for run %s: %s", run_id, exc)
