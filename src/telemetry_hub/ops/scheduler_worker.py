from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from telemetry_hub.cache.store import CacheStore
from telemetry_hub.collection.orchestrator import CollectionOrchestrator
from telemetry_hub.core.models import MonthlyReport, SourceOutcome
from telemetry_hub.reporting.service import ReportingService, previous_month

logger = logging.getLogger(__name__)

REPORT_FLAG_TTL_SECONDS = 60 * 60 * 24 * 35


def report_flag_key(year: int, month: int) -> str:
    return f"report:generated:{year:04d}-{month:02d}"


class SyncSchedulerWorker:
    def __init__(
        self,
        orchestrator: CollectionOrchestrator,
        reporting: ReportingService,
        cache: CacheStore,
        *,
        interval_minutes: int = 15,
        monthly_report_enabled: bool = True,
    ) -> None:
        self.orchestrator = orchestrator
        self.reporting = reporting
        self.cache = cache
        self.interval_seconds = max(60, interval_minutes * 60)
        self.monthly_report_enabled = monthly_report_enabled
        self._running = False

    async def run_forever(self) -> None:
        self._running = True
        while self._running:
            try:
                await self.run_once()
            except Exception as exc:  # noqa: BLE001
                logger.error("Scheduled collection tick failed: %s", exc)
            await asyncio.sleep(self.interval_seconds)

    async def stop(self) -> None:
        self._running = False

    async def run_once(self, now: datetime | None = None) -> list[SourceOutcome]:
        outcomes = await self.orchestrator.collect_all(triggered_by="scheduler")
        if self.monthly_report_enabled:
            await asyncio.to_thread(self.maybe_generate_monthly_report, now or datetime.now(timezone.utc))
        return outcomes

    def maybe_generate_monthly_report(self, now: datetime) -> MonthlyReport | None:
        """On the 1st of a month, build last month's report once."""
        if now.day != 1:
            return None
        year, month = previous_month(now.year, now.month)
        key = report_flag_key(year, month)
        if self.cache.get_with_age(key) is not None:
            return None
        try:
            report = self.reporting.generate_monthly_report(year, month, write_file=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Monthly report %04d-%02d generation failed: %s", year, month, exc)
            return None
        self.cache.set(key, now.isoformat(), REPORT_FLAG_TTL_SECONDS)
        return report
