"""
Prompt Analytics - Service Result Envelope.

Public service operations never raise past their boundary; they return a
ServiceResult carrying either data or a typed error.
"""
from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, Generic, ParamSpec, TypeVar

from pydantic import BaseModel, ConfigDict, Field
import structlog

from .exceptions import AnalyticsError, InternalError

logger = structlog.get_logger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


class ErrorInfo(BaseModel):
    """Machine-readable error description."""
    code: str
    message: str
    status: int
    details: dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(frozen=True)


class ServiceResult(BaseModel, Generic[T]):
    """Discriminated success/error envelope."""
    success: bool
    data: T | None = None
    error: ErrorInfo | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ServiceResult[Any]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: AnalyticsError) -> ServiceResult[Any]:
        # Internal details stay in the log, never in the envelope.
        details = {} if isinstance(error, InternalError) else dict(error.details)
        return cls(success=False, error=ErrorInfo(
            code=error.error_code, message=error.user_message,
            status=error.http_status, details=details,
        ))

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None

    def unwrap(self) -> T:
        """Return data or raise when the result is a failure."""
        if not self.success:
            code = self.error.code if self.error else "UNKNOWN"
            raise RuntimeError(f"unwrap() on failed result: {code}")
        return self.data  # type: ignore[return-value]


def returns_result(
    operation: str, failure_message: str
) -> Callable[[Callable[P, Awaitable[Any]]], Callable[P, Awaitable[ServiceResult[Any]]]]:
    """Convert raised errors into failed results at a service boundary.

    Typed analytics errors keep their own code. Anything else is logged with
    its traceback and reported as a generic INTERNAL_ERROR.
    """
    def decorator(func: Callable[P, Awaitable[Any]]) -> Callable[P, Awaitable[ServiceResult[Any]]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> ServiceResult[Any]:
            try:
                return ServiceResult.ok(await func(*args, **kwargs))
            except AnalyticsError as e:
                return ServiceResult.fail(e)
            except Exception as e:
                logger.exception("unexpected_service_error", operation=operation, error=str(e))
                return ServiceResult.fail(InternalError(failure_message, operation=operation, cause=e))
        return wrapper
    return decorator
