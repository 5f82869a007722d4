from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from telemetry_hub.cache.store import CacheStore
from telemetry_hub.core.models import DataFreshness, DataOrigin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadResult:
    value: Any
    origin: DataOrigin
    stale: bool = False
    degraded: bool = False
    age_seconds: float | None = None

    @property
    def freshness(self) -> DataFreshness:
        return DataFreshness(
            origin=self.origin,
            stale=self.stale,
            degraded=self.degraded,
            age_seconds=round(self.age_seconds, 3) if self.age_seconds is not None else None,
        )


class ReadThroughCache:
    """
    The one read path for cached views: cache -> live compute -> persisted fallback.

    Values passed through here must be JSON-serializable; callers convert
    pydantic models with `model_dump(mode="json")` before returning them from
    `compute` and rebuild them from `ReadResult.value`.
    """

    def __init__(self, store: CacheStore, executor: Executor | None = None) -> None:
        self.store = store
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="cache-refresh")
        self._refreshing: set[str] = set()
        self._lock = threading.Lock()

    def close(self, wait: bool = True) -> None:
        """Stop background refreshes. An injected executor is left to its owner."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait, cancel_futures=True)

    def get_or_compute(
        self,
        key: str,
        ttl_seconds: int,
        compute: Callable[[], Any],
        fallback: Callable[[], Any] | None = None,
        *,
        serve_stale: bool = True,
    ) -> ReadResult:
        hit = self.store.get_with_age(key)
        if hit is not None and hit.is_fresh(ttl_seconds):
            return ReadResult(value=hit.value, origin=DataOrigin.CACHE, age_seconds=hit.age_seconds)
        if hit is not None and serve_stale:
            self._schedule_refresh(key, ttl_seconds, compute)
            return ReadResult(value=hit.value, origin=DataOrigin.CACHE, stale=True, age_seconds=hit.age_seconds)

        try:
            value = compute()
        except Exception as exc:  # noqa: BLE001
            if fallback is None:
                raise
            logger.warning("Live compute for %s failed, serving persisted data: %s", key, exc)
            try:
                persisted = fallback()
            except Exception as fallback_exc:  # noqa: BLE001
                logger.warning("Persisted fallback for %s failed: %s", key, fallback_exc)
                raise exc from fallback_exc
            return ReadResult(value=persisted, origin=DataOrigin.PERSISTED, stale=True, degraded=True)

        self.store.set(key, value, ttl_seconds)
        return ReadResult(value=value, origin=DataOrigin.LIVE, age_seconds=0.0)

    def is_refreshing(self, key: str) -> bool:
        with self._lock:
            return key in self._refreshing

    def _schedule_refresh(self, key: str, ttl_seconds: int, compute: Callable[[], Any]) -> None:
        with self._lock:
            if key in self._refreshing:
                return
            self._refreshing.add(key)
        try:
            self._executor.submit(self._refresh, key, ttl_seconds, compute)
        except RuntimeError as exc:
            logger.warning("Could not schedule refresh for %s: %s", key, exc)
            with self._lock:
                self._refreshing.discard(key)

    def _refresh(self, key: str, ttl_seconds: int, compute: Callable[[], Any]) -> None:
        try:
            self.store.set(key, compute(), ttl_seconds)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Background refresh for %s failed: %s", key, exc)
        finally:
            with self._lock:
                self._refreshing.discard(key)
