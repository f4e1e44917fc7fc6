"""
Prompt Analytics - API Endpoints.

REST surface over the metrics and report services. Every route answers with
the service result envelope; failed results use the error's status code.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Body, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from .metrics import MetricsService
from .models import AggregationType, AggregationWindow, MetricType, ReportType
from .reports import ReportService
from .result import ServiceResult

if TYPE_CHECKING:
    from .main import AnalyticsRuntime

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


def get_runtime(request: Request) -> AnalyticsRuntime:
    """Dependency to get the running analytics runtime."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None or not runtime.is_started:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics service not initialized",
        )
    return runtime


def get_metrics_service(request: Request) -> MetricsService:
    return get_runtime(request).metrics


def get_report_service(request: Request) -> ReportService:
    return get_runtime(request).reports


def respond(result: ServiceResult[Any], success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Render a service result with a matching HTTP status."""
    code = success_status if result.success else result.error.status  # type: ignore[union-attr]
    return JSONResponse(status_code=code, content=result.model_dump(mode="json"))


def _date_range(start: datetime, end: datetime) -> dict[str, datetime]:
    return {"start": start, "end": end}


class GenerateReportRequest(BaseModel):
    """Report submission body."""
    workspace_id: str
    user_id: str
    config: dict[str, Any]


class ArchiveReportRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


@router.post("/metrics")
async def record_metric(request: Request, payload: dict[str, Any] = Body(...)) -> JSONResponse:
    """Record a single metric."""
    result = await get_metrics_service(request).record_metric(payload)
    return respond(result, status.HTTP_201_CREATED)


@router.get("/metrics/prompts/{prompt_id}")
async def get_prompt_metrics(
    request: Request,
    prompt_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    metric_types: list[MetricType] | None = Query(default=None),
) -> JSONResponse:
    options = {"metric_types": metric_types} if metric_types else None
    result = await get_metrics_service(request).get_prompt_metrics(
        prompt_id, _date_range(start, end), options,
    )
    return respond(result)


@router.get("/metrics/workspaces/{workspace_id}")
async def get_workspace_analytics(
    request: Request,
    workspace_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    metric_types: list[MetricType] | None = Query(default=None),
    interval: AggregationWindow = Query(default=AggregationWindow.HOUR),
    aggregation_type: AggregationType = Query(default=AggregationType.AVG),
    smoothing: bool = Query(default=False),
) -> JSONResponse:
    options = {
        "metric_types": metric_types,
        "interval": interval,
        "aggregation_type": aggregation_type,
        "smoothing": smoothing,
    }
    result = await get_metrics_service(request).get_workspace_analytics(
        workspace_id, _date_range(start, end), options,
    )
    return respond(result)


@router.get("/metrics/workspaces/{workspace_id}/roi")
async def calculate_roi(
    request: Request,
    workspace_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
) -> JSONResponse:
    result = await get_metrics_service(request).calculate_roi(workspace_id, _date_range(start, end))
    return respond(result)


@router.post("/reports")
async def generate_report(request: Request, body: GenerateReportRequest) -> JSONResponse:
    """Queue report generation; poll the job endpoint for completion."""
    result = await get_report_service(request).generate_report(
        body.config, body.workspace_id, body.user_id,
    )
    return respond(result, status.HTTP_202_ACCEPTED)


@router.get("/reports/jobs/{job_id}")
async def get_report_job(request: Request, job_id: str) -> JSONResponse:
    return respond(await get_report_service(request).get_job_status(job_id))


@router.get("/reports/workspaces/{workspace_id}")
async def list_workspace_reports(
    request: Request,
    workspace_id: str,
    page: int = Query(default=1),
    limit: int = Query(default=10),
    report_type: ReportType | None = Query(default=None),
    is_archived: bool | None = Query(default=None),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
) -> JSONResponse:
    report_filter: dict[str, Any] = {"report_type": report_type, "is_archived": is_archived}
    if start is not None or end is not None:
        report_filter["date_range"] = {"start": start, "end": end}
    result = await get_report_service(request).get_workspace_reports(
        workspace_id, report_filter, {"page": page, "limit": limit},
    )
    return respond(result)


@router.get("/reports/{report_id}")
async def get_report(request: Request, report_id: str) -> JSONResponse:
    return respond(await get_report_service(request).get_report(report_id))


@router.post("/reports/{report_id}/archive")
async def archive_report(
    request: Request, report_id: str, body: ArchiveReportRequest | None = None,
) -> JSONResponse:
    reason = body.reason if body else None
    result = await get_report_service(request).archive_report(report_id, reason)
    if result.success:
        logger.info("report_archive_requested", report_id=report_id)
    return respond(result)
