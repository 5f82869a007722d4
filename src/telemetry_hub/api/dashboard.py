from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from telemetry_hub.core.container import get_dashboard_service
from telemetry_hub.core.models import DashboardSummary, SourceSnapshot, TrendReport
from telemetry_hub.core.security import AuthContext, UserRole, require_roles
from telemetry_hub.dashboard.service import DashboardService

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/summary", response_model=DashboardSummary)
def get_summary(
    period: str = Query(default="7d"),
    service: DashboardService = Depends(get_dashboard_service),
    _auth: AuthContext = Depends(require_roles(UserRole.VIEWER, UserRole.OPERATOR)),
) -> DashboardSummary:
    try:
        return service.summary(period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/trends", response_model=TrendReport)
def get_trends(
    period: str = Query(default="7d"),
    source: str | None = Query(default=None),
    service: DashboardService = Depends(get_dashboard_service),
    _auth: AuthContext = Depends(require_roles(UserRole.VIEWER, UserRole.OPERATOR)),
) -> TrendReport:
    try:
        return service.trends_report(period=period, source=source)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/sources/{source}", response_model=SourceSnapshot)
def get_source_snapshot(
    source: str,
    period: str = Query(default="7d"),
    service: DashboardService = Depends(get_dashboard_service),
    _auth: AuthContext = Depends(require_roles(UserRole.VIEWER, UserRole.OPERATOR)),
) -> SourceSnapshot:
    try:
        return service.source_snapshot(source, period)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
