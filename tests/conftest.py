"""
Pytest configuration and fixtures for prompt analytics tests.
"""
import asyncio
import os
from datetime import datetime, timedelta, timezone

# Keep test runs independent of any local .env or Redis instance
os.environ.setdefault("ANALYTICS_CACHE_BACKEND", "memory")
os.environ.setdefault("ANALYTICS_SERVICE_ENV", "development")

import pytest
import pytest_asyncio

from prompt_analytics.cache import InMemoryCache
from prompt_analytics.config import CacheConfig, MetricsConfig, ReportSettings
from prompt_analytics.metrics import MetricsService
from prompt_analytics.models import DateRange, MetricRecord, MetricType
from prompt_analytics.observability import MetricsRegistry
from prompt_analytics.queue import InProcessJobQueue
from prompt_analytics.reports import ReportService
from prompt_analytics.repository import InMemoryMetricStore, InMemoryReportStore

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_record(
    value: float,
    metric_type: MetricType = MetricType.USAGE,
    days: float = 0,
    prompt_id: str = "prompt-1",
    workspace_id: str = "ws-1",
    user_id: str = "user-1",
) -> MetricRecord:
    return MetricRecord(
        prompt_id=prompt_id,
        workspace_id=workspace_id,
        user_id=user_id,
        metric_type=metric_type,
        value=value,
        timestamp=BASE_TIME + timedelta(days=days),
    )


def metric_payload(**overrides):
    payload = {
        "prompt_id": "prompt-1",
        "workspace_id": "ws-1",
        "user_id": "user-1",
        "metric_type": "USAGE",
        "value": 10,
        "timestamp": BASE_TIME.isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def date_range():
    """Window covering every fixture timestamp."""
    return DateRange(start=BASE_TIME - timedelta(days=1), end=BASE_TIME + timedelta(days=40))


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def metric_store():
    return InMemoryMetricStore()


@pytest.fixture
def report_store():
    return InMemoryReportStore()


@pytest.fixture
def registry():
    return MetricsRegistry()


@pytest.fixture
def metrics_service(metric_store, cache, registry, sleep):
    return MetricsService(
        metric_store, cache, MetricsConfig(), CacheConfig(), registry=registry, sleep=sleep,
    )


@pytest_asyncio.fixture
async def job_queue(sleep):
    queue = InProcessJobQueue(concurrency=2, poll_timeout=0.05, sleep=sleep)
    await queue.start()
    yield queue
    await queue.stop()


@pytest.fixture
def report_service(report_store, metrics_service, job_queue, cache, registry):
    service = ReportService(
        report_store, metrics_service, job_queue, cache,
        ReportSettings(), CacheConfig(), registry=registry,
    )
    service.register_worker()
    return service
