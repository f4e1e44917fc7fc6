"""
Prompt Analytics - Exception Hierarchy.

Structured exceptions with machine-readable codes and HTTP-like status
classification. Errors log themselves on construction so the original cause
is recorded even when the caller only sees a generic envelope.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    STORE = "store"
    CACHE = "cache"
    QUEUE = "queue"
    INTERNAL = "internal"


class AnalyticsError(Exception):
    """Base exception for all analytics errors with structured tracking."""
    error_code: str = "ANALYTICS_ERROR"
    category: ErrorCategory = ErrorCategory.INTERNAL
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, user_message: str | None = None,
                 operation: str | None = None, cause: Exception | None = None,
                 details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message
        self.operation = operation
        self.cause = cause
        self.details = details or {}
        self.correlation_id = str(uuid.uuid4())
        self.timestamp = datetime.now(timezone.utc)
        self._log_error()

    def _log_error(self) -> None:
        log_data: dict[str, Any] = {
            "error_code": self.error_code, "category": self.category.value,
            "severity": self.severity.value, "correlation_id": self.correlation_id,
            "operation": self.operation, "details": self.details,
        }
        if self.cause:
            log_data["cause_type"] = type(self.cause).__name__
            log_data["cause_message"] = str(self.cause)
        if self.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            logger.error(self.message, **log_data)
        else:
            logger.warning(self.message, **log_data)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.error_code, "message": self.user_message,
                          "status": self.http_status,
                          "correlation_id": self.correlation_id,
                          "timestamp": self.timestamp.isoformat()}}


class ValidationError(AnalyticsError):
    error_code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW
    http_status = 400

    def __init__(self, message: str, *, field: str | None = None,
                 errors: list[dict[str, Any]] | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(message, details=details, **kwargs)
        self.field = field


class NotFoundError(AnalyticsError):
    error_code = "NOT_FOUND"
    category = ErrorCategory.NOT_FOUND
    severity = ErrorSeverity.LOW
    http_status = 404

    def __init__(self, entity_type: str, entity_id: str, **kwargs: Any) -> None:
        message = f"{entity_type} with ID '{entity_id}' not found"
        details = kwargs.pop("details", {})
        details.update({"entity_type": entity_type, "entity_id": entity_id})
        super().__init__(message, user_message=f"{entity_type} not found",
                         details=details, **kwargs)
        self.entity_type, self.entity_id = entity_type, entity_id


class RateLimitedError(AnalyticsError):
    error_code = "RATE_LIMITED"
    category = ErrorCategory.RATE_LIMIT
    severity = ErrorSeverity.LOW
    http_status = 429

    def __init__(self, scope: str, limit: int, window_seconds: int,
                 retry_after: int | None = None, **kwargs: Any) -> None:
        message = f"Rate limit of {limit} per {window_seconds}s exceeded for {scope}"
        details = kwargs.pop("details", {})
        details.update({"limit": limit, "window_seconds": window_seconds})
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(message, user_message="Too many requests. Please try again later.",
                         details=details, **kwargs)
        self.retry_after = retry_after


class StoreError(AnalyticsError):
    error_code = "STORE_ERROR"
    category = ErrorCategory.STORE
    severity = ErrorSeverity.HIGH
    http_status = 503


class StoreTransientError(StoreError):
    """Timeout or connectivity problem; safe to retry."""
    error_code = "STORE_UNAVAILABLE"
    retryable = True


class StoreTerminalError(StoreError):
    """Constraint violation or malformed write; retrying cannot help."""
    error_code = "STORE_REJECTED"
    http_status = 422


class CacheError(AnalyticsError):
    error_code = "CACHE_ERROR"
    category = ErrorCategory.CACHE
    severity = ErrorSeverity.MEDIUM


class QueueError(AnalyticsError):
    error_code = "QUEUE_ERROR"
    category = ErrorCategory.QUEUE
    severity = ErrorSeverity.HIGH
    http_status = 503


class ReportGenerationError(AnalyticsError):
    """Raised inside the report worker so the job queue retries the job."""
    error_code = "REPORT_GENERATION_FAILED"
    severity = ErrorSeverity.HIGH
    retryable = True


class InternalError(AnalyticsError):
    error_code = "INTERNAL_ERROR"
    severity = ErrorSeverity.HIGH
    http_status = 500

    def __init__(self, message: str = "Internal server error", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
