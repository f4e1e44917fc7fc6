"""
Unit tests for the runtime container and error envelope.
"""
import pytest

from prompt_analytics.cache import InMemoryCache, RedisCache
from prompt_analytics.config import AnalyticsServiceConfig, CacheConfig
from prompt_analytics.exceptions import (
    CacheError,
    InternalError,
    NotFoundError,
    StoreTerminalError,
    StoreTransientError,
    ValidationError,
)
from prompt_analytics.main import AnalyticsRuntime
from prompt_analytics.result import ServiceResult, returns_result

from conftest import RecordingSleep, metric_payload


class UnreachableCache(InMemoryCache):
    async def connect(self) -> None:
        raise CacheError("Failed to connect to Redis after 3 attempts", operation="cache.connect")


class TestAnalyticsRuntime:
    """Tests for runtime wiring and lifecycle."""

    def test_memory_backend_by_default(self):
        runtime = AnalyticsRuntime(AnalyticsServiceConfig())
        assert isinstance(runtime.cache, InMemoryCache)
        assert runtime.metrics is not None
        assert runtime.reports is not None

    def test_redis_backend_selected_from_config(self):
        config = AnalyticsServiceConfig(cache=CacheConfig(backend="redis"))
        assert isinstance(AnalyticsRuntime(config).cache, RedisCache)

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        runtime = AnalyticsRuntime(AnalyticsServiceConfig(), sleep=RecordingSleep())

        await runtime.start()
        assert runtime.is_started
        assert runtime.queue.is_running
        assert (await runtime.health())["status"] == "healthy"

        await runtime.stop()
        assert not runtime.is_started
        assert not runtime.queue.is_running

    @pytest.mark.asyncio
    async def test_unreachable_cache_does_not_block_start(self):
        runtime = AnalyticsRuntime(AnalyticsServiceConfig(), cache=UnreachableCache(), sleep=RecordingSleep())

        await runtime.start()
        try:
            assert runtime.is_started
            assert runtime.queue.is_running
            assert (await runtime.metrics.record_metric(metric_payload())).success
        finally:
            await runtime.stop()


class TestServiceResult:
    """Tests for the success/error envelope."""

    def test_ok(self):
        result = ServiceResult.ok({"a": 1})
        assert result.success
        assert result.unwrap() == {"a": 1}
        assert result.error_code is None

    def test_fail_keeps_error_code_and_status(self):
        result = ServiceResult.fail(NotFoundError("Report", "r-1"))

        assert result.error_code == "NOT_FOUND"
        assert result.error.status == 404
        assert result.error.message == "Report not found"
        assert result.error.details["entity_id"] == "r-1"
        with pytest.raises(RuntimeError):
            result.unwrap()

    def test_internal_error_hides_details(self):
        result = ServiceResult.fail(InternalError("boom", details={"dsn": "secret"}))
        assert result.error.details == {}
        assert result.error.status == 500

    def test_store_error_classification(self):
        assert StoreTransientError("t").retryable
        assert not StoreTerminalError("t").retryable
        assert ValidationError("v", field="value").details == {"field": "value"}

    @pytest.mark.asyncio
    async def test_returns_result_decorator(self):
        @returns_result("op", "Operation failed")
        async def explode():
            raise ZeroDivisionError("division by zero")

        @returns_result("op", "Operation failed")
        async def reject():
            raise ValidationError("bad input")

        crashed = await explode()
        rejected = await reject()

        assert crashed.error_code == "INTERNAL_ERROR"
        assert crashed.error.message == "Operation failed"
        assert rejected.error_code == "VALIDATION_ERROR"
