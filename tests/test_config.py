"""
Unit tests for analytics configuration.
"""
import pytest

from prompt_analytics.config import (
    AnalyticsServiceConfig,
    CacheConfig,
    Environment,
    MetricsConfig,
    ReportSettings,
    get_config,
    reset_config,
)
from prompt_analytics.models import MetricType


class TestDefaults:
    """Tests for default configuration values."""

    def test_metrics_defaults(self):
        config = MetricsConfig()

        assert config.retry_attempts == 3
        assert config.retry_base_delay_ms == 1000
        assert config.retry_factor == 2.0
        assert config.trend_threshold_percent == 1.0
        assert config.roi_trend_threshold_percent == 5.0
        assert config.cost_metric_types == [MetricType.COST_SAVINGS]
        assert config.benefit_metric_types == [MetricType.ROI]

    def test_report_defaults(self):
        config = ReportSettings()

        assert config.job_attempts == 3
        assert config.estimated_completion_minutes == 5
        assert config.validity_days == 30
        assert config.report_version == "1.0"

    def test_cache_ttls(self):
        config = CacheConfig()
        assert config.backend == "memory"
        assert config.metrics_ttl_seconds == config.reports_ttl_seconds == 3600


class TestEnvironmentOverrides:
    """Tests for environment-driven settings."""

    def test_prefixed_env_vars(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_METRICS_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("ANALYTICS_CACHE_BACKEND", "redis")
        monkeypatch.setenv("ANALYTICS_SERVICE_ENV", "production")

        config = AnalyticsServiceConfig.load()

        assert config.metrics.retry_attempts == 5
        assert config.cache.backend == "redis"
        assert config.service.env == Environment.PRODUCTION
        assert config.is_production()

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_QUEUE_WORKER_CONCURRENCY", "0")
        with pytest.raises(ValueError):
            AnalyticsServiceConfig()


class TestSingleton:
    """Tests for cached process configuration."""

    def test_get_config_caches_until_reset(self):
        reset_config()
        first = get_config()
        assert get_config() is first

        reset_config()
        assert get_config() is not first
        reset_config()
