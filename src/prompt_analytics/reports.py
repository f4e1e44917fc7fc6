"""
Prompt Analytics - Report Generation Pipeline.

Report requests are validated synchronously and handed to the job queue; a
worker builds each report from workspace analytics (and ROI when requested),
persists it and caches the document.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from pydantic import TypeAdapter
import structlog

from .cache import Cache, CacheAside
from .config import CacheConfig, ReportSettings
from .exceptions import NotFoundError, ReportGenerationError
from .metrics import MetricsService, parse_model, require_id
from .models import (
    MetricQueryOptions,
    PageInfo,
    Pagination,
    ReportDocument,
    ReportFilter,
    ReportJobState,
    ReportJobStatus,
    ReportJobTicket,
    ReportPage,
    ReportRequest,
    cache_token,
)
from .observability import MetricsRegistry, instrumented
from .queue import BackoffPolicy, JobOptions, JobQueue, JobRecord, JobStatus
from .repository import ReportStore
from .result import ServiceResult, returns_result

logger = structlog.get_logger(__name__)

REPORT_JOB_TYPE = "generate-report"

_DOCUMENT = TypeAdapter(ReportDocument)
_PAGE = TypeAdapter(ReportPage)

_JOB_STATES = {
    JobStatus.QUEUED: ReportJobState.QUEUED,
    JobStatus.RUNNING: ReportJobState.RUNNING,
    JobStatus.RETRYING: ReportJobState.FAILED_RETRYABLE,
    JobStatus.COMPLETED: ReportJobState.COMPLETED,
    JobStatus.FAILED: ReportJobState.FAILED_TERMINAL,
}


class ReportService:
    """Report submission, background generation and retrieval."""

    def __init__(
        self, store: ReportStore, metrics: MetricsService, queue: JobQueue, cache: Cache,
        settings: ReportSettings | None = None,
        cache_config: CacheConfig | None = None,
        registry: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._metrics = metrics
        self._queue = queue
        self._settings = settings or ReportSettings()
        self._cache_config = cache_config or CacheConfig()
        self._cache = CacheAside(cache, self._cache_config.reports_ttl_seconds)
        self._registry = registry

    def register_worker(self) -> None:
        """Attach the report worker to the job queue."""
        self._queue.on_job(REPORT_JOB_TYPE, self.process_report_job)

    @instrumented("generate_report")
    @returns_result("generate_report", "Failed to generate report")
    async def generate_report(
        self, config: ReportRequest | Mapping[str, Any], workspace_id: str, user_id: str,
    ) -> ReportJobTicket:
        workspace_id = require_id(workspace_id, "workspace_id")
        user_id = require_id(user_id, "user_id")
        request = parse_model(ReportRequest, config, "report configuration")
        logger.debug("report_request_validated", workspace_id=workspace_id,
                     report_type=request.report_type.value)
        options = JobOptions(
            attempts=self._settings.job_attempts,
            backoff=BackoffPolicy(
                delay_ms=self._settings.job_backoff_delay_ms,
                factor=self._settings.job_backoff_factor,
            ),
        )
        job_id = await self._queue.enqueue(REPORT_JOB_TYPE, {
            "config": request.model_dump(mode="json"),
            "workspace_id": workspace_id,
            "user_id": user_id,
        }, options)
        logger.info("report_generation_queued", job_id=job_id, workspace_id=workspace_id)
        return ReportJobTicket(
            job_id=job_id,
            status=ReportJobState.QUEUED.value,
            estimated_completion=datetime.now(timezone.utc)
            + timedelta(minutes=self._settings.estimated_completion_minutes),
        )

    async def process_report_job(self, job: JobRecord) -> str:
        """Build and persist one report; raising makes the queue retry the job."""
        request = ReportRequest.model_validate(job.payload["config"])
        workspace_id = job.payload["workspace_id"]
        user_id = job.payload["user_id"]
        log = logger.bind(job_id=job.id, workspace_id=workspace_id, attempt=job.attempts_made)
        log.info("report_job_started")

        analytics = await self._metrics.get_workspace_analytics(
            workspace_id, request.date_range,
            MetricQueryOptions(metric_types=request.metrics, group_by=["metric_type"]),
        )
        self._raise_on_failure(analytics, "workspace analytics", job)
        roi = None
        if request.includes_roi():
            roi_result = await self._metrics.calculate_roi(workspace_id, request.date_range)
            self._raise_on_failure(roi_result, "ROI", job)
            roi = roi_result.data

        document = await self._store.generate_report(request, workspace_id, user_id, analytics.data, roi)
        await self._cache.put(f"report:{document.id}", _DOCUMENT, document,
                              self._cache_config.report_document_ttl_seconds)
        log.info("report_job_completed", report_id=document.id)
        return document.id

    def _raise_on_failure(self, result: ServiceResult[Any], what: str, job: JobRecord) -> None:
        if result.success:
            return
        raise ReportGenerationError(
            f"Failed to load {what} for report",
            operation="process_report_job",
            details={"job_id": job.id, "cause_code": result.error_code},
        )

    @instrumented("get_workspace_reports")
    @returns_result("get_workspace_reports", "Failed to retrieve reports")
    async def get_workspace_reports(
        self, workspace_id: str,
        report_filter: ReportFilter | Mapping[str, Any] | None = None,
        pagination: Pagination | Mapping[str, Any] | None = None,
    ) -> ReportPage:
        workspace_id = require_id(workspace_id, "workspace_id")
        criteria = parse_model(ReportFilter, report_filter or {}, "filter")
        page = parse_model(
            Pagination, pagination or {"limit": self._settings.default_page_size}, "pagination",
        )
        limit = min(page.limit, self._settings.max_page_size)
        key = f"reports:{workspace_id}:{cache_token(criteria)}:{page.page}:{limit}"

        async def load() -> ReportPage:
            reports = await self._store.find_by_workspace(
                workspace_id, criteria, skip=(page.page - 1) * limit, limit=limit,
            )
            total = await self._store.count_documents(workspace_id, criteria)
            return ReportPage(reports=reports, pagination=PageInfo(page=page.page, limit=limit, total=total))

        return await self._cache.get_or_load(key, _PAGE, load)

    @instrumented("get_report")
    @returns_result("get_report", "Failed to retrieve report")
    async def get_report(self, report_id: str) -> ReportDocument:
        report_id = require_id(report_id, "report_id")

        async def load() -> ReportDocument:
            document = await self._store.get(report_id)
            if document is None:
                raise NotFoundError("Report", report_id, operation="get_report")
            return document

        return await self._cache.get_or_load(
            f"report:{report_id}", _DOCUMENT, load, self._cache_config.report_document_ttl_seconds,
        )

    @instrumented("get_job_status")
    @returns_result("get_job_status", "Failed to retrieve report job status")
    async def get_job_status(self, job_id: str) -> ReportJobStatus:
        job_id = require_id(job_id, "job_id")
        job = await self._queue.get_job(job_id)
        if job is None or job.job_type != REPORT_JOB_TYPE:
            raise NotFoundError("Report job", job_id, operation="get_job_status")
        return ReportJobStatus(
            job_id=job.id,
            state=_JOB_STATES[job.status],
            attempts_made=job.attempts_made,
            max_attempts=job.max_attempts,
            report_id=job.result if job.status == JobStatus.COMPLETED else None,
            error=job.last_error if job.status != JobStatus.COMPLETED else None,
        )

    @instrumented("archive_report")
    @returns_result("archive_report", "Failed to archive report")
    async def archive_report(self, report_id: str, reason: str | None = None) -> None:
        report_id = require_id(report_id, "report_id")
        await self._store.archive_report(report_id, reason)
        await self._cache.drop(f"report:{report_id}")
