"""
Prompt Analytics - Store Adapters.

Abstract metric and report stores with in-memory implementations for
development and tests. Store failures surface as StoreTransientError
(retryable) or StoreTerminalError.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Sequence

import structlog

from . import aggregations
from .exceptions import NotFoundError, StoreTerminalError
from .models import (
    AggregateRow,
    DateRange,
    MetricFilter,
    MetricRecord,
    MetricType,
    ReportData,
    ReportDocument,
    ReportFilter,
    ReportMetadata,
    ReportRequest,
    ReportSummary,
    RoiResult,
    WorkspaceAnalytics,
)

logger = structlog.get_logger(__name__)


class MetricStore(ABC):
    """Persistence port for metric records."""

    @abstractmethod
    async def connect(self) -> None: ...
    @abstractmethod
    async def disconnect(self) -> None: ...
    @abstractmethod
    async def health_check(self) -> bool: ...
    @abstractmethod
    async def create(self, record: MetricRecord) -> MetricRecord: ...
    @abstractmethod
    async def find_by_prompt(
        self, prompt_id: str, date_range: DateRange | None = None,
    ) -> list[MetricRecord]: ...
    @abstractmethod
    async def find_by_date_range(
        self, date_range: DateRange, metric_filter: MetricFilter | None = None,
    ) -> list[MetricRecord]: ...
    @abstractmethod
    async def aggregate_by_workspace(
        self, workspace_id: str, date_range: DateRange | None = None,
        metric_types: Sequence[MetricType] | None = None,
        group_by: Sequence[str] | None = None,
    ) -> list[AggregateRow]: ...
    @abstractmethod
    async def delete_by_filter(self, metric_filter: MetricFilter) -> int: ...


class InMemoryMetricStore(MetricStore):
    """In-memory metric store for testing and development."""

    def __init__(self) -> None:
        self._records: dict[str, MetricRecord] = {}
        self._connected = False
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        self._connected = True
        logger.info("inmemory_metric_store_connected")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("inmemory_metric_store_disconnected")

    async def health_check(self) -> bool:
        return self._connected

    async def create(self, record: MetricRecord) -> MetricRecord:
        async with self._lock:
            if record.id in self._records:
                raise StoreTerminalError(
                    f"Duplicate metric id {record.id}", operation="metric_store.create",
                    details={"id": record.id},
                )
            self._records[record.id] = record
        logger.debug("metric_persisted", metric_id=record.id, prompt_id=record.prompt_id)
        return record

    async def find_by_prompt(
        self, prompt_id: str, date_range: DateRange | None = None,
    ) -> list[MetricRecord]:
        return self._select(MetricFilter(prompt_id=prompt_id, date_range=date_range))

    async def find_by_date_range(
        self, date_range: DateRange, metric_filter: MetricFilter | None = None,
    ) -> list[MetricRecord]:
        criteria = (metric_filter or MetricFilter()).model_copy(update={"date_range": date_range})
        return self._select(criteria)

    async def aggregate_by_workspace(
        self, workspace_id: str, date_range: DateRange | None = None,
        metric_types: Sequence[MetricType] | None = None,
        group_by: Sequence[str] | None = None,
    ) -> list[AggregateRow]:
        records = self._select(MetricFilter(workspace_id=workspace_id, date_range=date_range))
        if metric_types:
            records = [r for r in records if r.metric_type in metric_types]
        return aggregations.aggregate_rows(records, list(group_by or ["metric_type"]))

    async def delete_by_filter(self, metric_filter: MetricFilter) -> int:
        async with self._lock:
            doomed = [rid for rid, r in self._records.items() if metric_filter.matches(r)]
            for rid in doomed:
                del self._records[rid]
        logger.info("metrics_deleted", count=len(doomed))
        return len(doomed)

    def _select(self, metric_filter: MetricFilter) -> list[MetricRecord]:
        results = [r for r in self._records.values() if metric_filter.matches(r)]
        return sorted(results, key=lambda r: r.timestamp, reverse=True)


class ReportStore(ABC):
    """Persistence port for report documents."""

    def __init__(self, validity_days: int = 30, report_version: str = "1.0") -> None:
        self._validity = timedelta(days=validity_days)
        self._report_version = report_version

    @abstractmethod
    async def insert(self, document: ReportDocument) -> ReportDocument: ...
    @abstractmethod
    async def get(self, report_id: str) -> ReportDocument | None: ...
    @abstractmethod
    async def find_by_workspace(
        self, workspace_id: str, report_filter: ReportFilter | None = None,
        skip: int = 0, limit: int = 10,
    ) -> list[ReportDocument]: ...
    @abstractmethod
    async def count_documents(
        self, workspace_id: str, report_filter: ReportFilter | None = None,
    ) -> int: ...
    @abstractmethod
    async def archive_report(self, report_id: str, reason: str | None = None) -> ReportDocument: ...

    async def generate_report(
        self, config: ReportRequest, workspace_id: str, user_id: str,
        analytics: WorkspaceAnalytics, roi: RoiResult | None = None,
    ) -> ReportDocument:
        """Build the report payload from analytics and persist it."""
        typed_rows = [row for row in analytics.rows if "metric_type" in row.group]
        recommendations = list(analytics.recommendations)
        if roi is not None:
            recommendations.extend(r for r in roi.recommendations if r not in recommendations)
        data = ReportData(
            summary=ReportSummary(
                total_metrics=len(analytics.rows),
                date_range=config.date_range,
                sample_count=analytics.summary.total,
            ),
            metrics=analytics.rows,
            statistics=analytics.summary.metrics,
            trend=analytics.trend,
            time_series=analytics.time_series,
            roi=roi,
            insights=aggregations.generate_insights(typed_rows, analytics.trend),
            recommendations=recommendations,
            confidence=analytics.confidence,
        )
        generated_at = datetime.now(timezone.utc)
        document = ReportDocument(
            title=config.title,
            description=config.description,
            workspace_id=workspace_id,
            user_id=user_id,
            report_type=config.report_type,
            configuration=config,
            data=data,
            generated_at=generated_at,
            valid_until=generated_at + self._validity,
            metadata=ReportMetadata(generated_by=user_id, version=self._report_version),
        )
        stored = await self.insert(document)
        logger.info("report_generated", report_id=stored.id, workspace_id=workspace_id,
                    report_type=config.report_type.value)
        return stored


def _report_matches(document: ReportDocument, report_filter: ReportFilter | None) -> bool:
    if report_filter is None:
        return True
    if report_filter.report_type is not None and document.report_type != report_filter.report_type:
        return False
    if report_filter.is_archived is not None and document.is_archived != report_filter.is_archived:
        return False
    if report_filter.date_range is not None and not report_filter.date_range.contains(document.generated_at):
        return False
    return True


class InMemoryReportStore(ReportStore):
    """In-memory report store for testing and development."""

    def __init__(self, validity_days: int = 30, report_version: str = "1.0") -> None:
        super().__init__(validity_days, report_version)
        self._documents: dict[str, ReportDocument] = {}
        self._lock = asyncio.Lock()

    async def insert(self, document: ReportDocument) -> ReportDocument:
        async with self._lock:
            if document.id in self._documents:
                raise StoreTerminalError(
                    f"Duplicate report id {document.id}", operation="report_store.insert",
                    details={"id": document.id},
                )
            self._documents[document.id] = document
        return document

    async def get(self, report_id: str) -> ReportDocument | None:
        return self._documents.get(report_id)

    async def find_by_workspace(
        self, workspace_id: str, report_filter: ReportFilter | None = None,
        skip: int = 0, limit: int = 10,
    ) -> list[ReportDocument]:
        results = [d for d in self._documents.values()
                   if d.workspace_id == workspace_id and _report_matches(d, report_filter)]
        results.sort(key=lambda d: d.generated_at, reverse=True)
        return results[skip:skip + limit]

    async def count_documents(
        self, workspace_id: str, report_filter: ReportFilter | None = None,
    ) -> int:
        return sum(1 for d in self._documents.values()
                   if d.workspace_id == workspace_id and _report_matches(d, report_filter))

    async def archive_report(self, report_id: str, reason: str | None = None) -> ReportDocument:
        async with self._lock:
            document = self._documents.get(report_id)
            if document is None:
                raise NotFoundError("Report", report_id, operation="report_store.archive")
            metadata = document.metadata.model_copy(update={
                "archival_reason": reason,
                "archival_date": datetime.now(timezone.utc),
            })
            archived = document.model_copy(update={"is_archived": True, "metadata": metadata})
            self._documents[report_id] = archived
        logger.info("report_archived", report_id=report_id, reason=reason)
        return archived
