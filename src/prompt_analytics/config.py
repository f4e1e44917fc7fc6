"""
Prompt Analytics - Configuration.

Environment-driven settings for the analytics service. Each concern owns a
settings group with its own prefix; AnalyticsServiceConfig aggregates them.
"""
from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

from .models import MetricType

logger = structlog.get_logger(__name__)


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ServiceConfiguration(BaseSettings):
    """Core service configuration."""
    name: str = Field(default="prompt-analytics")
    version: str = Field(default="1.0.0")
    env: Environment = Field(default=Environment.DEVELOPMENT)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8009, ge=1, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    workers: int = Field(default=1, ge=1, le=16)

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_SERVICE_",
        env_file=".env",
        extra="ignore",
    )


class CacheConfig(BaseSettings):
    """Cache backend selection and entry lifetimes."""
    backend: Literal["memory", "redis"] = Field(default="memory")
    metrics_ttl_seconds: int = Field(default=3600, ge=1, le=86400)
    reports_ttl_seconds: int = Field(default=3600, ge=1, le=86400)
    report_document_ttl_seconds: int = Field(default=3600, ge=1, le=86400)

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_CACHE_",
        env_file=".env",
        extra="ignore",
    )


class MetricsConfig(BaseSettings):
    """Metric ingestion retry policy and ROI/trend parameters."""
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_ms: int = Field(default=1000, ge=0, le=60000)
    retry_factor: float = Field(default=2.0, ge=1.0, le=10.0)
    trend_threshold_percent: float = Field(default=1.0, ge=0.0)
    roi_trend_threshold_percent: float = Field(default=5.0, ge=0.0)
    cost_metric_types: list[MetricType] = Field(default_factory=lambda: [MetricType.COST_SAVINGS])
    benefit_metric_types: list[MetricType] = Field(default_factory=lambda: [MetricType.ROI])
    currency: str = Field(default="USD", min_length=3, max_length=3)
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_requests: int = Field(default=1000, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1, le=86400)

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_METRICS_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class ReportSettings(BaseSettings):
    """Report job scheduling and document lifetime."""
    job_attempts: int = Field(default=3, ge=1, le=10)
    job_backoff_delay_ms: int = Field(default=1000, ge=0, le=60000)
    job_backoff_factor: float = Field(default=2.0, ge=1.0, le=10.0)
    estimated_completion_minutes: int = Field(default=5, ge=1, le=1440)
    validity_days: int = Field(default=30, ge=1, le=365)
    default_page_size: int = Field(default=10, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=1000)
    report_version: str = Field(default="1.0")

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_REPORTS_",
        env_file=".env",
        extra="ignore",
    )


class QueueConfig(BaseSettings):
    """In-process job queue configuration."""
    worker_concurrency: int = Field(default=4, ge=1, le=64)
    poll_timeout_seconds: float = Field(default=1.0, gt=0.0, le=60.0)
    completed_job_retention: int = Field(default=1000, ge=1, le=100000)

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_QUEUE_",
        env_file=".env",
        extra="ignore",
    )


class ObservabilityConfig(BaseSettings):
    """Logging and instrumentation configuration."""
    log_format: Literal["json", "console"] = Field(default="json")
    metrics_enabled: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_OBSERVABILITY_",
        env_file=".env",
        extra="ignore",
    )


class AnalyticsServiceConfig(BaseSettings):
    """Aggregate analytics service configuration."""
    service: ServiceConfiguration = Field(default_factory=ServiceConfiguration)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    reports: ReportSettings = Field(default_factory=ReportSettings)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @staticmethod
    def load() -> AnalyticsServiceConfig:
        """Load configuration from environment."""
        config = AnalyticsServiceConfig()
        logger.info(
            "analytics_config_loaded",
            service=config.service.name,
            env=config.service.env.value,
            cache_backend=config.cache.backend,
            worker_concurrency=config.queue.worker_concurrency,
        )
        return config

    def is_production(self) -> bool:
        return self.service.env == Environment.PRODUCTION


_config: AnalyticsServiceConfig | None = None


def get_config() -> AnalyticsServiceConfig:
    """Get singleton configuration instance."""
    global _config
    if _config is None:
        _config = AnalyticsServiceConfig.load()
    return _config


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    global _config
    _config = None
