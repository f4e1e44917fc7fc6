"""
Prompt Analytics - Rate Limiting.

Sliding window counters keyed by scope (for example ``metrics:{workspace_id}``).
The previous window's count is weighted by how much of it still overlaps the
sliding window.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from .exceptions import RateLimitedError

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitResult:
    """Result of rate limit check."""
    allowed: bool
    remaining: int
    limit: int
    retry_after: int | None = None


@dataclass
class SlidingWindowCounter:
    window_seconds: float
    current_count: int = 0
    previous_count: int = 0
    window_start: float = 0.0

    def calculate_count(self, now: float) -> int:
        elapsed = now - self.window_start
        if elapsed >= self.window_seconds:
            return self.current_count
        weight = (self.window_seconds - elapsed) / self.window_seconds
        return int(self.previous_count * weight) + self.current_count


class SlidingWindowRateLimiter:
    """In-process sliding window limiter."""

    def __init__(
        self, limit: int, window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._counters: dict[str, SlidingWindowCounter] = {}

    def increment(self, scope: str) -> RateLimitResult:
        now = self._clock()
        counter = self._counters.get(scope)
        if counter is None:
            counter = self._counters[scope] = SlidingWindowCounter(self._window, window_start=now)
        elif now - counter.window_start >= 2 * self._window:
            counter.previous_count, counter.current_count, counter.window_start = 0, 0, now
        elif now - counter.window_start >= self._window:
            counter.previous_count, counter.current_count = counter.current_count, 0
            counter.window_start += self._window
        current = counter.calculate_count(now) + 1
        if current > self._limit:
            retry_after = math.ceil(counter.window_start + self._window - now)
            logger.warning("rate_limit_exceeded", scope=scope, limit=self._limit, current=current)
            return RateLimitResult(allowed=False, remaining=0, limit=self._limit,
                                   retry_after=max(1, retry_after))
        counter.current_count += 1
        return RateLimitResult(allowed=True, remaining=self._limit - current, limit=self._limit)

    def check(self, scope: str) -> None:
        """Count one request against scope; raise RateLimitedError when over the limit."""
        result = self.increment(scope)
        if not result.allowed:
            raise RateLimitedError(scope, self._limit, int(self._window),
                                   retry_after=result.retry_after, operation="rate_limit")

    def reset(self, scope: str) -> None:
        self._counters.pop(scope, None)
