from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from crmops.business.reporting.opportunities.descriptors import parse_drilldown_type
from crmops.business.reporting.opportunities.errors import ReportDataError
from crmops.business.reporting.opportunities.periods import TimePeriod, parse_period
from crmops.business.reporting.opportunities.schemas import StageSettingsRead, StageSettingsUpdate
from crmops.business.reporting.opportunities.service import opportunity_drilldown_service
from crmops.business.reporting.opportunities.stages import stage_settings_service
from crmops.business.reporting.opportunities.stats import opportunity_stats_service
from crmops.context import get_correlation_id
from crmops.core.config import get_settings
from crmops.core.database import get_db
from crmops.platform.tenancy import TenantContext, get_tenant_context


router = APIRouter(prefix="/api", tags=["reports", "opportunities"])


def error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return JSONResponse(status_code=status_code, content={"error": message, "correlation_id": correlation_id})


ALL_FILTER = "all"


def _filter_value(raw: str | None) -> str | None:
    value = (raw or "").strip()
    if not value or value.lower() == ALL_FILTER:
        return None
    return value


def _cached(payload: dict[str, object]) -> JSONResponse:
    return JSONResponse(content=payload, headers={"Cache-Control": get_settings().reporting_cache_control})


@router.get("/opportunities/drilldown")
def opportunity_drilldown(
    request: Request,
    report_type_raw: str | None = Query(default=None, alias="type"),
    period: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
) -> JSONResponse:
    try:
        report_type = parse_drilldown_type(report_type_raw)
        time_period = parse_period(period, default=TimePeriod.MONTH)
    except ValueError as exc:
        return error_response(request, 400, str(exc))

    try:
        response = opportunity_drilldown_service.drilldown(db, ctx, report_type, time_period)
    except ReportDataError as exc:
        return error_response(request, 500, str(exc))
    return _cached(response.to_wire())


@router.get("/opportunities/stats")
def opportunity_stats(
    request: Request,
    period: str | None = Query(default=None),
    stage: str | None = Query(default=None),
    owner_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
) -> JSONResponse:
    try:
        time_period = parse_period(period, default=TimePeriod.ALL)
    except ValueError as exc:
        return error_response(request, 400, str(exc))

    try:
        response = opportunity_stats_service.stats(
            db,
            ctx,
            time_period,
            stage=_filter_value(stage),
            owner_id=_filter_value(owner_id),
        )
    except ReportDataError as exc:
        return error_response(request, 500, str(exc))
    return _cached(response.to_wire())


@router.get("/settings/opportunities/stages")
def read_stage_settings(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
) -> JSONResponse:
    table = stage_settings_service.load_stage_table(db, ctx)
    payload = StageSettingsRead(source=table.source, stages=list(table))
    return JSONResponse(content=payload.model_dump(mode="json", by_alias=True))


@router.put("/settings/opportunities/stages")
def update_stage_settings(
    payload: StageSettingsUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
) -> JSONResponse:
    table = stage_settings_service.save_stages(db, ctx, payload.stages)
    result = StageSettingsRead(source=table.source, stages=list(table))
    return JSONResponse(content=result.model_dump(mode="json", by_alias=True))
