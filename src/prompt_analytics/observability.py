"""Prompt Analytics Observability - Structured logging and operation instrumentation."""
from __future__ import annotations

import functools
import inspect
import logging
import time
from typing import Any, Callable, ParamSpec, TypeVar

import structlog

P = ParamSpec("P")
R = TypeVar("R")

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def configure_logging(
    service_name: str = "prompt-analytics",
    environment: str = "development",
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Configure structured logging with structlog."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_service_context(service_name, environment),
    ]
    if log_format == "json":
        processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_LOG_LEVELS.get(log_level, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _add_service_context(service_name: str, environment: str) -> Callable[..., Any]:
    """Processor to add service context to logs."""
    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict["service"] = service_name
        event_dict["environment"] = environment
        return event_dict
    return processor


class MetricsRegistry:
    """In-process counters and duration histograms for service operations."""

    def __init__(self, prefix: str = "analytics") -> None:
        self._prefix = prefix
        self._counters: dict[str, float] = {}
        self._histograms: dict[str, list[float]] = {}

    def _make_key(self, name: str, labels: dict[str, str] | None = None) -> str:
        key = f"{self._prefix}_{name}"
        if labels:
            label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
            key = f"{key}{{{label_str}}}"
        return key

    def counter(self, name: str, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        self._counters[key] = self._counters.get(key, 0) + value

    def histogram(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        self._histograms.setdefault(key, []).append(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        return self._counters.get(self._make_key(name, labels), 0)

    def get_all(self) -> dict[str, Any]:
        return {
            "counters": dict(self._counters),
            "histograms": {k: self._histogram_stats(v) for k, v in self._histograms.items()},
        }

    def _histogram_stats(self, values: list[float]) -> dict[str, float]:
        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}
        return {
            "count": len(values), "sum": sum(values),
            "min": min(values), "max": max(values),
            "avg": sum(values) / len(values),
        }

    def reset(self) -> None:
        self._counters.clear()
        self._histograms.clear()


def instrumented(
    operation: str, registry_attr: str = "_registry"
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Count calls, failures and duration of a service method.

    The registry is looked up on the bound instance so each service reports
    into the registry it was constructed with.
    """
    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"instrumented() requires a coroutine function: {func.__qualname__}")

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
            registry: MetricsRegistry | None = getattr(args[0], registry_attr, None) if args else None
            labels = {"operation": operation}
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)  # type: ignore[misc]
            except Exception:
                if registry is not None:
                    registry.counter("operation_errors_total", labels=labels)
                raise
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                if registry is not None:
                    registry.counter("operation_calls_total", labels=labels)
                    registry.histogram("operation_duration_ms", duration_ms, labels=labels)
            if registry is not None and getattr(result, "success", True) is False:
                registry.counter("operation_failures_total", labels=labels)
            return result
        return wrapper  # type: ignore[return-value]
    return decorator
