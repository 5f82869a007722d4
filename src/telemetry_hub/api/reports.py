from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from telemetry_hub.core.container import get_reporting_service
from telemetry_hub.core.models import MonthlyReport, MonthlyReportRequest
from telemetry_hub.core.security import AuthContext, UserRole, require_roles
from telemetry_hub.reporting.service import ReportingService

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("/monthly", response_model=MonthlyReport)
def generate_monthly_report(
    req: MonthlyReportRequest,
    reporting: ReportingService = Depends(get_reporting_service),
    _auth: AuthContext = Depends(require_roles(UserRole.OPERATOR)),
) -> MonthlyReport:
    return reporting.generate_monthly_report(req.year, req.month, write_file=req.write_file)


@router.get("/monthly/{year}/{month}", response_model=MonthlyReport)
def get_monthly_report(
    year: int,
    month: int,
    reporting: ReportingService = Depends(get_reporting_service),
    _auth: AuthContext = Depends(require_roles(UserRole.VIEWER, UserRole.OPERATOR)),
) -> MonthlyReport:
    try:
        return reporting.get_monthly_report(year, month)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
