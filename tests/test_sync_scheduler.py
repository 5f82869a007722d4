from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

from telemetry_hub.cache.store import InMemoryCacheStore
from telemetry_hub.core.models import RunOutcome, SourceOutcome
from telemetry_hub.ops.scheduler_worker import SyncSchedulerWorker, report_flag_key


class FakeOrchestrator:
    def __init__(self) -> None:
        self.triggers: list[str] = []

    async def collect_all(self, triggered_by: str = "manual") -> list[SourceOutcome]:
        self.triggers.append(triggered_by)
        return [SourceOutcome(source="edr", status=RunOutcome.SUCCESS, records_synced=1)]


class FakeReportingService:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[int, int]] = []
        self.fail = fail

    def generate_monthly_report(self, year: int, month: int, write_file: bool = True):
        self.calls.append((year, month))
        if self.fail:
            raise OSError("disk full")
        return SimpleNamespace(year=year, month=month)


def _worker(reporting: FakeReportingService, enabled: bool = True):
    orchestrator = FakeOrchestrator()
    cache = InMemoryCacheStore()
    worker = SyncSchedulerWorker(
        orchestrator=orchestrator,
        reporting=reporting,
        cache=cache,
        interval_minutes=15,
        monthly_report_enabled=enabled,
    )
    return worker, orchestrator, cache


def test_run_once_collects_with_scheduler_trigger() -> None:
    worker, orchestrator, _ = _worker(FakeReportingService())
    outcomes = asyncio.run(worker.run_once(now=datetime(2026, 1, 15, tzinfo=timezone.utc)))
    assert orchestrator.triggers == ["scheduler"]
    assert outcomes[0].records_synced == 1
    assert worker.interval_seconds == 900


def test_monthly_report_generated_once_on_first_of_month() -> None:
    reporting = FakeReportingService()
    worker, _, cache = _worker(reporting)
    first = datetime(2026, 1, 1, 0, 15, tzinfo=timezone.utc)

    asyncio.run(worker.run_once(now=first))
    asyncio.run(worker.run_once(now=first.replace(hour=6)))
    assert reporting.calls == [(2025, 12)]
    assert cache.get_with_age(report_flag_key(2025, 12)) is not None

    asyncio.run(worker.run_once(now=datetime(2026, 1, 2, tzinfo=timezone.utc)))
    assert reporting.calls == [(2025, 12)]


def test_failed_report_is_retried_on_next_tick() -> None:
    reporting = FakeReportingService(fail=True)
    worker, _, cache = _worker(reporting)
    first = datetime(2026, 3, 1, tzinfo=timezone.utc)

    assert worker.maybe_generate_monthly_report(first) is None
    assert cache.get_with_age(report_flag_key(2026, 2)) is None
    reporting.fail = False
    assert worker.maybe_generate_monthly_report(first) is not None
    assert reporting.calls == [(2026, 2), (2026, 2)]


def test_disabled_monthly_report_is_never_generated() -> None:
    reporting = FakeReportingService()
    worker, _, _ = _worker(reporting, enabled=False)
    asyncio.run(worker.run_once(now=datetime(2026, 1, 1, tzinfo=timezone.utc)))
    assert reporting.calls == []


def test_stop_ends_run_forever_loop() -> None:
    worker, orchestrator, _ = _worker(FakeReportingService(), enabled=False)
    worker.interval_seconds = 0

    async def scenario() -> None:
        task = asyncio.create_task(worker.run_forever())
        while not orchestrator.triggers:
            await asyncio.sleep(0)
        await worker.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())
    assert orchestrator.triggers[0] == "scheduler"
