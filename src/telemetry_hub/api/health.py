from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from telemetry_hub.cache.store import CacheStore
from telemetry_hub.collection.orchestrator import CollectionOrchestrator
from telemetry_hub.core.container import get_cache_store, get_orchestrator

router = APIRouter(tags=["health"])

_PING_KEY = "health:ping"


@router.get("/health")
def health() -> dict[str, str]:
    return {
        "status": "ok",
        "service": "security-telemetry-hub",
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/detailed")
def health_detailed(
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
    cache: CacheStore = Depends(get_cache_store),
) -> dict[str, object]:
    checks: dict[str, str] = {}
    try:
        orchestrator.store.ping()
        checks["database"] = "ok"
    except Exception as exc:  # noqa: BLE001
        checks["database"] = f"error: {exc}"

    stamp = datetime.now(timezone.utc).isoformat()
    cache.set(_PING_KEY, stamp, 60)
    hit = cache.get_with_age(_PING_KEY)
    checks["cache"] = "ok" if hit is not None and hit.value == stamp else "error: cache unavailable"

    sources = [s.model_dump(mode="json") for s in orchestrator.source_statuses()] if checks["database"] == "ok" else []
    healthy = all(v == "ok" for v in checks.values())
    return {
        "status": "ok" if healthy else "degraded",
        "timestamp_utc": stamp,
        "checks": checks,
        "sources": sources,
    }
