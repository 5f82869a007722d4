from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from telemetry_hub.collection.orchestrator import CollectionOrchestrator
from telemetry_hub.core.container import get_orchestrator
from telemetry_hub.core.exceptions import PersistenceFailure
from telemetry_hub.core.models import RunLogPage, SourceOutcome, SourceRunStatus
from telemetry_hub.core.security import AuthContext, UserRole, require_roles

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/all", response_model=list[SourceOutcome])
async def sync_all(
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
    _auth: AuthContext = Depends(require_roles(UserRole.OPERATOR)),
) -> list[SourceOutcome]:
    return await orchestrator.collect_all(triggered_by="api")


@router.get("/status", response_model=list[SourceRunStatus])
def sync_status(
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
    _auth: AuthContext = Depends(require_roles(UserRole.VIEWER, UserRole.OPERATOR)),
) -> list[SourceRunStatus]:
    return orchestrator.source_statuses()


@router.get("/history", response_model=RunLogPage)
def sync_history(
    source: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
    _auth: AuthContext = Depends(require_roles(UserRole.VIEWER, UserRole.OPERATOR)),
) -> RunLogPage:
    try:
        return orchestrator.run_history(source=source, limit=limit, offset=offset)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post("/{source}", response_model=SourceOutcome)
async def sync_source(
    source: str,
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
    _auth: AuthContext = Depends(require_roles(UserRole.OPERATOR)),
) -> SourceOutcome:
    try:
        return await orchestrator.collect_one(source, triggered_by="api")
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PersistenceFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
