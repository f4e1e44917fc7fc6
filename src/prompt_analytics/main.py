"""
Prompt Analytics - FastAPI Application.

AnalyticsRuntime wires the cache, stores, job queue and services from the
configuration and owns their lifecycle; the application lifespan starts it
before serving and stops it on shutdown.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import FastAPI
import structlog

from .api import router as analytics_router
from .cache import Cache, InMemoryCache, RedisCache
from .config import AnalyticsServiceConfig, get_config
from .exceptions import CacheError
from .metrics import MetricsService
from .observability import MetricsRegistry, configure_logging
from .queue import InProcessJobQueue, JobQueue
from .reports import ReportService
from .repository import InMemoryMetricStore, InMemoryReportStore, MetricStore, ReportStore

logger = structlog.get_logger(__name__)


class AnalyticsRuntime:
    """Explicit dependency container for one analytics process."""

    def __init__(
        self, config: AnalyticsServiceConfig,
        cache: Cache | None = None,
        metric_store: MetricStore | None = None,
        report_store: ReportStore | None = None,
        queue: JobQueue | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.cache = cache or self._build_cache(config, sleep)
        self.metric_store = metric_store or InMemoryMetricStore()
        self.report_store = report_store or InMemoryReportStore(
            validity_days=config.reports.validity_days,
            report_version=config.reports.report_version,
        )
        self.queue = queue or InProcessJobQueue(
            concurrency=config.queue.worker_concurrency,
            poll_timeout=config.queue.poll_timeout_seconds,
            sleep=sleep,
            retention=config.queue.completed_job_retention,
        )
        self.registry = MetricsRegistry() if config.observability.metrics_enabled else None
        self.metrics = MetricsService(
            self.metric_store, self.cache, config.metrics, config.cache,
            registry=self.registry, sleep=sleep,
        )
        self.reports = ReportService(
            self.report_store, self.metrics, self.queue, self.cache,
            config.reports, config.cache, registry=self.registry,
        )
        self._started = False

    @staticmethod
    def _build_cache(config: AnalyticsServiceConfig, sleep: Callable[[float], Awaitable[None]]) -> Cache:
        if config.cache.backend == "redis":
            return RedisCache(sleep=sleep)
        return InMemoryCache()

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        try:
            await self.cache.connect()
        except CacheError as e:
            logger.warning("cache_unavailable_at_startup", backend=self.config.cache.backend, error=str(e))
        await self.metric_store.connect()
        self.reports.register_worker()
        await self.queue.start()
        self._started = True
        logger.info("analytics_runtime_started", cache_backend=self.config.cache.backend)

    async def stop(self) -> None:
        if not self._started:
            return
        await self.queue.stop()
        await self.metric_store.disconnect()
        await self.cache.disconnect()
        self._started = False
        logger.info("analytics_runtime_stopped")

    async def health(self) -> dict[str, Any]:
        store_ok = await self.metric_store.health_check()
        return {
            "status": "healthy" if self._started and store_ok else "degraded",
            "metric_store": store_ok,
            "operations": self.registry.get_all() if self.registry else {},
        }


def create_app(
    runtime: AnalyticsRuntime | None = None,
    config: AnalyticsServiceConfig | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = runtime.config if runtime else (config or get_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active = runtime or AnalyticsRuntime(settings)
        logger.info("analytics_service_starting", service=settings.service.name,
                    env=settings.service.env.value)
        await active.start()
        app.state.runtime = active
        logger.info("analytics_service_ready")
        try:
            yield
        finally:
            logger.info("analytics_service_shutdown")
            await active.stop()
            app.state.runtime = None

    app = FastAPI(
        title="Prompt Analytics Service",
        description="Prompt metrics ingestion, analytics, ROI and report generation",
        version=settings.service.version,
        lifespan=lifespan,
        docs_url=None if settings.is_production() else "/docs",
        redoc_url=None if settings.is_production() else "/redoc",
    )
    app.state.runtime = None
    app.include_router(analytics_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, Any]:
        """Health check endpoint."""
        active: AnalyticsRuntime | None = app.state.runtime
        if active is None:
            return {"status": "starting"}
        return await active.health()

    @app.get("/ready", tags=["health"])
    async def ready() -> dict[str, str]:
        """Readiness check endpoint."""
        active: AnalyticsRuntime | None = app.state.runtime
        if active is None or not active.is_started:
            return {"status": "not_ready", "reason": "runtime_not_started"}
        return {"status": "ready"}

    return app


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    configure_logging(
        service_name=config.service.name,
        environment=config.service.env.value,
        log_level=config.service.log_level,
        log_format=config.observability.log_format,
    )
    uvicorn.run(
        create_app(config=config),
        host=config.service.host,
        port=config.service.port,
        log_level=config.service.log_level.lower(),
    )
