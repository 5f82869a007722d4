import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI

from telemetry_hub import __version__
from telemetry_hub.api.dashboard import router as dashboard_router
from telemetry_hub.api.health import router as health_router
from telemetry_hub.api.reports import router as reports_router
from telemetry_hub.api.sync import router as sync_router
from telemetry_hub.core.config import get_settings
from telemetry_hub.core.container import get_read_cache, get_scheduler_worker
from telemetry_hub.core.logging import setup_logging

settings = get_settings()
setup_logging(settings.log_level)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    worker = None
    worker_task = None
    if settings.sync_scheduler_enabled:
        worker = get_scheduler_worker()
        worker_task = asyncio.create_task(worker.run_forever(), name="sync-scheduler")
    try:
        yield
    finally:
        if worker is not None:
            await worker.stop()
        if worker_task is not None:
            worker_task.cancel()
            with suppress(asyncio.CancelledError):
                await worker_task
        # only close the read cache if a request actually built it
        if get_read_cache.cache_info().currsize:
            get_read_cache().close(wait=False)


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="Security telemetry collection, aggregation and trend service.",
    lifespan=_lifespan,
)

app.include_router(health_router)
app.include_router(sync_router)
app.include_router(dashboard_router)
app.include_router(reports_router)


@app.get("/")
def root() -> dict[str, str]:
    return {"message": "Security telemetry hub is running."}
