"""
Prompt Analytics - Data Models.

Write-side payloads, persisted records, query options and the analytics
results exchanged between the services, the stores and the cache.
"""
from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SENSITIVE_METADATA_KEYS = frozenset({"useremail", "ipaddress", "sessionid", "authtoken"})
GROUPABLE_FIELDS = frozenset({"prompt_id", "workspace_id", "user_id", "metric_type"})


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def cache_token(model: BaseModel | None) -> str:
    """Deterministic JSON rendering of a model for use inside cache keys."""
    if model is None:
        return "{}"
    payload = model.model_dump(mode="json", exclude_none=True)
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def sanitize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Drop sensitive keys regardless of casing and separator style."""
    if not metadata:
        return {}
    return {
        key: value for key, value in metadata.items()
        if key.lower().replace("-", "").replace("_", "") not in SENSITIVE_METADATA_KEYS
    }


class MetricType(str, Enum):
    """Tracked prompt metric kinds."""
    USAGE = "USAGE"
    SUCCESS_RATE = "SUCCESS_RATE"
    RESPONSE_TIME = "RESPONSE_TIME"
    ERROR_RATE = "ERROR_RATE"
    USER_SATISFACTION = "USER_SATISFACTION"
    ROI = "ROI"
    COST_SAVINGS = "COST_SAVINGS"


class AggregationWindow(str, Enum):
    """Time-series bucket width."""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class AggregationType(str, Enum):
    """Reduction applied to each time-series bucket."""
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class ReportType(str, Enum):
    USAGE_SUMMARY = "USAGE_SUMMARY"
    PERFORMANCE_METRICS = "PERFORMANCE_METRICS"
    ROI_ANALYSIS = "ROI_ANALYSIS"
    TEAM_ANALYTICS = "TEAM_ANALYTICS"


class ExportFormat(str, Enum):
    PDF = "PDF"
    CSV = "CSV"
    JSON = "JSON"


class ReportJobState(str, Enum):
    """Lifecycle of a report generation job."""
    RECEIVED = "received"
    VALIDATED = "validated"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


class DateRange(BaseModel):
    """Inclusive time window; naive datetimes are taken as UTC."""
    start: datetime
    end: datetime
    model_config = ConfigDict(frozen=True)

    @field_validator("start", "end")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        return _utc(v)

    @model_validator(mode="after")
    def ordered(self) -> DateRange:
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= _utc(moment) <= self.end

    def unix_bounds(self) -> tuple[int, int]:
        return int(self.start.timestamp()), int(self.end.timestamp())


class MetricInput(BaseModel):
    """Metric write payload as received from clients."""
    prompt_id: str = Field(min_length=1)
    workspace_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    metric_type: MetricType
    value: float
    timestamp: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("value", mode="before")
    @classmethod
    def numeric_value(cls, v: Any) -> Any:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("value must be a number")
        if not math.isfinite(v):
            raise ValueError("value must be finite")
        return v

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime | None) -> datetime | None:
        return _utc(v) if v is not None else None

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_dict(cls, v: Any) -> Any:
        return {} if v is None else v


class MetricRecord(BaseModel):
    """Persisted metric."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    prompt_id: str
    workspace_id: str
    user_id: str
    metric_type: MetricType
    value: float
    timestamp: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return _utc(v)

    @classmethod
    def from_input(cls, data: MetricInput) -> MetricRecord:
        return cls(
            prompt_id=data.prompt_id,
            workspace_id=data.workspace_id,
            user_id=data.user_id,
            metric_type=data.metric_type,
            value=data.value,
            timestamp=data.timestamp or _now(),
            metadata=sanitize_metadata(data.metadata),
        )

    def field_value(self, name: str) -> str:
        value = getattr(self, name)
        return value.value if isinstance(value, Enum) else str(value)


class MetricQueryOptions(BaseModel):
    """Read-side query options; also part of the metrics cache key."""
    metric_types: list[MetricType] | None = None
    group_by: list[str] | None = None
    interval: AggregationWindow = AggregationWindow.HOUR
    aggregation_type: AggregationType = AggregationType.AVG
    smoothing: bool = False

    @field_validator("group_by")
    @classmethod
    def known_fields(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        unknown = [f for f in v if f not in GROUPABLE_FIELDS]
        if unknown:
            raise ValueError(f"cannot group by: {', '.join(unknown)}")
        return v


class MetricFilter(BaseModel):
    prompt_id: str | None = None
    workspace_id: str | None = None
    user_id: str | None = None
    metric_type: MetricType | None = None
    date_range: DateRange | None = None

    def matches(self, record: MetricRecord) -> bool:
        if self.prompt_id is not None and record.prompt_id != self.prompt_id:
            return False
        if self.workspace_id is not None and record.workspace_id != self.workspace_id:
            return False
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.metric_type is not None and record.metric_type != self.metric_type:
            return False
        if self.date_range is not None and not self.date_range.contains(record.timestamp):
            return False
        return True


class AggregateRow(BaseModel):
    """One grouped aggregate produced by the metric store."""
    group: dict[str, str] = Field(alias="_id")
    average: float
    sum: float
    min: float
    max: float
    count: int
    model_config = ConfigDict(populate_by_name=True)


class MetricStatistics(BaseModel):
    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    count: int = 0


class AggregateSummary(BaseModel):
    total: int = 0
    start: datetime | None = None
    end: datetime | None = None
    metrics: dict[str, MetricStatistics] = Field(default_factory=dict)
    overall: MetricStatistics = Field(default_factory=MetricStatistics)


class TimeSeriesPoint(BaseModel):
    timestamp: datetime
    value: float
    count: int


class Trend(BaseModel):
    direction: TrendDirection = TrendDirection.STABLE
    change_percent: float = 0.0
    sample_count: int = 0
    volatility: float = 0.0


class RoiFigures(BaseModel):
    roi: float
    payback_period: float
    total_cost: float
    total_benefit: float
    net_benefit: float


class RoiResult(BaseModel):
    figures: RoiFigures
    confidence: float
    trend: Trend
    currency: str
    sample_count: int
    recommendations: list[str] = Field(default_factory=list)


class WorkspaceAnalytics(BaseModel):
    """Workspace-level analytics as served to clients and the report worker."""
    workspace_id: str
    date_range: DateRange
    rows: list[AggregateRow] = Field(default_factory=list)
    summary: AggregateSummary = Field(default_factory=AggregateSummary)
    time_series: list[TimeSeriesPoint] = Field(default_factory=list)
    trend: Trend = Field(default_factory=Trend)
    confidence: float = 0.0
    recommendations: list[str] = Field(default_factory=list)


class Visualization(BaseModel):
    type: str
    options: dict[str, Any] = Field(default_factory=dict)


class ReportRequest(BaseModel):
    """Report configuration submitted by clients."""
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    report_type: ReportType
    date_range: DateRange
    metrics: list[MetricType] = Field(min_length=1)
    visualization: Visualization | None = None
    export_format: ExportFormat | None = None
    model_config = ConfigDict(str_strip_whitespace=True)

    def includes_roi(self) -> bool:
        return MetricType.ROI in self.metrics


class ReportFilter(BaseModel):
    report_type: ReportType | None = None
    date_range: DateRange | None = None
    is_archived: bool | None = None


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class ReportSummary(BaseModel):
    total_metrics: int
    date_range: DateRange
    sample_count: int


class ReportData(BaseModel):
    summary: ReportSummary
    metrics: list[AggregateRow] = Field(default_factory=list)
    statistics: dict[str, MetricStatistics] = Field(default_factory=dict)
    trend: Trend = Field(default_factory=Trend)
    time_series: list[TimeSeriesPoint] = Field(default_factory=list)
    roi: RoiResult | None = None
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = 0.0


class ReportMetadata(BaseModel):
    generated_by: str
    version: str
    archival_reason: str | None = None
    archival_date: datetime | None = None


class ReportDocument(BaseModel):
    """Persisted report."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    description: str = ""
    workspace_id: str
    user_id: str
    report_type: ReportType
    configuration: ReportRequest
    data: ReportData
    generated_at: datetime = Field(default_factory=_now)
    valid_until: datetime
    is_archived: bool = False
    metadata: ReportMetadata


class ReportJobTicket(BaseModel):
    job_id: str
    status: str = "queued"
    estimated_completion: datetime


class PageInfo(BaseModel):
    page: int
    limit: int
    total: int


class ReportPage(BaseModel):
    reports: list[ReportDocument] = Field(default_factory=list)
    pagination: PageInfo


class ReportJobStatus(BaseModel):
    job_id: str
    state: ReportJobState
    attempts_made: int = 0
    max_attempts: int = 0
    report_id: str | None = None
    error: str | None = None
