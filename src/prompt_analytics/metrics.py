"""
Prompt Analytics - Metrics Service.

Metric ingestion with validation and bounded retry, and cache-aside reads of
prompt metrics, workspace analytics and ROI.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
import structlog

from . import aggregations
from .cache import Cache, CacheAside
from .config import CacheConfig, MetricsConfig
from .exceptions import InternalError, StoreTransientError, ValidationError
from .models import (
    DateRange,
    MetricFilter,
    MetricInput,
    MetricQueryOptions,
    MetricRecord,
    RoiResult,
    WorkspaceAnalytics,
    cache_token,
)
from .observability import MetricsRegistry, instrumented
from .ratelimit import SlidingWindowRateLimiter
from .repository import MetricStore
from .result import returns_result

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

_RECORDS = TypeAdapter(list[MetricRecord])
_ANALYTICS = TypeAdapter(WorkspaceAnalytics)
_ROI = TypeAdapter(RoiResult)


def parse_model(model_type: type[M], data: M | Mapping[str, Any], label: str) -> M:
    """Coerce a mapping into a model, mapping pydantic failures to ValidationError."""
    if isinstance(data, model_type):
        return data
    try:
        return model_type.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]) or label, "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {label}", field=label, errors=errors) from e


def require_id(value: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


class MetricsService:
    """Write and read prompt metrics through the store and the cache."""

    def __init__(
        self, store: MetricStore, cache: Cache,
        config: MetricsConfig | None = None,
        cache_config: CacheConfig | None = None,
        registry: MetricsRegistry | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        self._store = store
        self._config = config or MetricsConfig()
        if rate_limiter is None and self._config.rate_limit_enabled:
            rate_limiter = SlidingWindowRateLimiter(
                self._config.rate_limit_requests, self._config.rate_limit_window_seconds,
            )
        self._limiter = rate_limiter
        self._cache_config = cache_config or CacheConfig()
        self._cache = CacheAside(cache, self._cache_config.metrics_ttl_seconds)
        self._registry = registry
        self._sleep = sleep

    @instrumented("record_metric")
    @returns_result("record_metric", "Failed to record metric")
    async def record_metric(self, data: MetricInput | Mapping[str, Any]) -> MetricRecord:
        metric = parse_model(MetricInput, data, "metric")
        if self._limiter is not None:
            self._limiter.check(f"metrics:{metric.workspace_id}")
        record = MetricRecord.from_input(metric)
        stored = await self._persist(record)
        await self._cache.invalidate_prefix(
            f"metrics:{stored.prompt_id}:",
            f"analytics:{stored.workspace_id}:",
            f"roi:{stored.workspace_id}:",
        )
        logger.info("metric_recorded", metric_id=stored.id, prompt_id=stored.prompt_id,
                    workspace_id=stored.workspace_id, metric_type=stored.metric_type.value)
        return stored

    async def _persist(self, record: MetricRecord) -> MetricRecord:
        attempts = self._config.retry_attempts
        last_error: StoreTransientError | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._store.create(record)
            except StoreTransientError as e:
                last_error = e
                if attempt == attempts:
                    break
                delay = self._config.retry_base_delay_ms * (self._config.retry_factor ** (attempt - 1)) / 1000
                logger.warning("metric_persist_retry", metric_id=record.id, attempt=attempt,
                               max_attempts=attempts, delay_seconds=delay)
                await self._sleep(delay)
        raise InternalError("Failed to record metric", operation="record_metric", cause=last_error,
                            details={"attempts": attempts})

    @instrumented("get_prompt_metrics")
    @returns_result("get_prompt_metrics", "Failed to retrieve prompt metrics")
    async def get_prompt_metrics(
        self, prompt_id: str, date_range: DateRange | Mapping[str, Any],
        options: MetricQueryOptions | Mapping[str, Any] | None = None,
    ) -> list[MetricRecord]:
        prompt_id = require_id(prompt_id, "prompt_id")
        window = parse_model(DateRange, date_range, "date_range")
        query = parse_model(MetricQueryOptions, options or {}, "options")
        start, end = window.unix_bounds()
        key = f"metrics:{prompt_id}:{start}:{end}:{cache_token(query)}"

        async def load() -> list[MetricRecord]:
            records = await self._store.find_by_prompt(prompt_id, window)
            if query.metric_types:
                records = [r for r in records if r.metric_type in query.metric_types]
            return records

        return await self._cache.get_or_load(key, _RECORDS, load)

    @instrumented("get_workspace_analytics")
    @returns_result("get_workspace_analytics", "Failed to retrieve workspace analytics")
    async def get_workspace_analytics(
        self, workspace_id: str, date_range: DateRange | Mapping[str, Any],
        options: MetricQueryOptions | Mapping[str, Any] | None = None,
    ) -> WorkspaceAnalytics:
        workspace_id = require_id(workspace_id, "workspace_id")
        window = parse_model(DateRange, date_range, "date_range")
        query = parse_model(MetricQueryOptions, options or {}, "options")
        start, end = window.unix_bounds()
        key = f"analytics:{workspace_id}:{start}:{end}:{cache_token(query)}"

        async def load() -> WorkspaceAnalytics:
            rows = await self._store.aggregate_by_workspace(
                workspace_id, window, query.metric_types, query.group_by or ["metric_type"],
            )
            records = await self._store.find_by_date_range(window, MetricFilter(workspace_id=workspace_id))
            if query.metric_types:
                records = [r for r in records if r.metric_type in query.metric_types]
            return WorkspaceAnalytics(
                workspace_id=workspace_id,
                date_range=window,
                rows=rows,
                summary=aggregations.aggregate(records),
                time_series=aggregations.bucket_time_series(
                    records, query.interval, query.aggregation_type, query.smoothing,
                ),
                trend=aggregations.trend(records, self._config.trend_threshold_percent),
                confidence=aggregations.confidence_score(records),
                recommendations=aggregations.generate_recommendations(records),
            )

        return await self._cache.get_or_load(key, _ANALYTICS, load)

    @instrumented("calculate_roi")
    @returns_result("calculate_roi", "Failed to calculate ROI")
    async def calculate_roi(
        self, workspace_id: str, date_range: DateRange | Mapping[str, Any],
    ) -> RoiResult:
        workspace_id = require_id(workspace_id, "workspace_id")
        window = parse_model(DateRange, date_range, "date_range")
        start, end = window.unix_bounds()

        async def load() -> RoiResult:
            records = await self._store.find_by_date_range(window, MetricFilter(workspace_id=workspace_id))
            cost = [r for r in records if r.metric_type in self._config.cost_metric_types]
            benefit = [r for r in records if r.metric_type in self._config.benefit_metric_types]
            sample = cost + benefit
            figures = aggregations.roi(cost, benefit, sample_count=len(sample))
            return RoiResult(
                figures=figures,
                confidence=aggregations.confidence_score(sample),
                trend=aggregations.trend(benefit, self._config.roi_trend_threshold_percent),
                currency=self._config.currency,
                sample_count=len(sample),
                recommendations=aggregations.roi_recommendations(figures),
            )

        return await self._cache.get_or_load(f"roi:{workspace_id}:{start}:{end}", _ROI, load)
