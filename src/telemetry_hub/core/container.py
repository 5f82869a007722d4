from __future__ import annotations

import logging
from functools import lru_cache

from telemetry_hub.cache.read_through import ReadThroughCache
from telemetry_hub.cache.store import CacheStore, InMemoryCacheStore, SqliteCacheStore
from telemetry_hub.collection.orchestrator import CollectionOrchestrator
from telemetry_hub.core.config import get_settings
from telemetry_hub.dashboard.service import DashboardService
from telemetry_hub.ops.scheduler_worker import SyncSchedulerWorker
from telemetry_hub.reporting.service import ReportingService
from telemetry_hub.sources.registry import SourceRegistry
from telemetry_hub.storage.telemetry_store import TelemetryStore
from telemetry_hub.trends.engine import TrendEngine

logger = logging.getLogger(__name__)


@lru_cache
def get_telemetry_store() -> TelemetryStore:
    return TelemetryStore(get_settings().telemetry_db_path)


@lru_cache
def get_cache_store() -> CacheStore:
    settings = get_settings()
    if settings.cache_backend.lower() == "memory":
        return InMemoryCacheStore()
    if settings.cache_backend.lower() != "sqlite":
        logger.warning("Unknown cache backend %r, using sqlite", settings.cache_backend)
    return SqliteCacheStore(settings.cache_db_path)


@lru_cache
def get_read_cache() -> ReadThroughCache:
    return ReadThroughCache(get_cache_store())


@lru_cache
def get_source_registry() -> SourceRegistry:
    registry = SourceRegistry.from_definitions(get_settings().source_definitions)
    logger.info("Registered sources: %s", ", ".join(registry.names()) or "<none>")
    return registry


@lru_cache
def get_orchestrator() -> CollectionOrchestrator:
    settings = get_settings()
    return CollectionOrchestrator(
        registry=get_source_registry(),
        store=get_telemetry_store(),
        cache=get_cache_store(),
        timeout_seconds=settings.source_timeout_seconds,
        chunk_size=settings.upsert_chunk_size,
        lookback_days=settings.sync_lookback_days,
        retention_days=settings.retention_days,
    )


@lru_cache
def get_trend_engine() -> TrendEngine:
    return TrendEngine(store=get_telemetry_store())


@lru_cache
def get_dashboard_service() -> DashboardService:
    return DashboardService(
        store=get_telemetry_store(),
        registry=get_source_registry(),
        trends=get_trend_engine(),
        cache=get_read_cache(),
        ttl_seconds=get_settings().dashboard_cache_ttl_seconds,
    )


@lru_cache
def get_reporting_service() -> ReportingService:
    return ReportingService(
        store=get_telemetry_store(),
        registry=get_source_registry(),
        output_dir=get_settings().report_output_dir,
    )


@lru_cache
def get_scheduler_worker() -> SyncSchedulerWorker:
    settings = get_settings()
    return SyncSchedulerWorker(
        orchestrator=get_orchestrator(),
        reporting=get_reporting_service(),
        cache=get_cache_store(),
        interval_minutes=settings.sync_interval_minutes,
        monthly_report_enabled=settings.monthly_report_enabled,
    )
