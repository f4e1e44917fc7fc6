"""Prompt Analytics - metrics ingestion, cache-aside analytics, ROI and report generation."""
from .exceptions import (
    AnalyticsError,
    CacheError,
    InternalError,
    NotFoundError,
    QueueError,
    RateLimitedError,
    ReportGenerationError,
    StoreError,
    StoreTerminalError,
    StoreTransientError,
    ValidationError,
)
from .metrics import MetricsService
from .reports import ReportService
from .result import ServiceResult

__version__ = "1.0.0"

__all__ = [
    "AnalyticsError",
    "CacheError",
    "InternalError",
    "MetricsService",
    "NotFoundError",
    "QueueError",
    "RateLimitedError",
    "ReportGenerationError",
    "ReportService",
    "ServiceResult",
    "StoreError",
    "StoreTerminalError",
    "StoreTransientError",
    "ValidationError",
]
