"""
Prompt Analytics - Job Queue.

Narrow enqueue/on_job interface for asynchronous work plus an in-process
implementation: an asyncio queue drained by a pool of worker tasks, with
per-job attempts and exponential backoff between them.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import BaseModel, Field
import structlog

from .exceptions import AnalyticsError, NotFoundError, QueueError

logger = structlog.get_logger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffPolicy(BaseModel):
    """Exponential backoff: delay_ms * factor ** (attempt - 1)."""
    delay_ms: int = Field(default=1000, ge=0)
    factor: float = Field(default=2.0, ge=1.0)

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms * (self.factor ** (attempt - 1)) / 1000


class JobOptions(BaseModel):
    attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)


class JobRecord(BaseModel):
    """Queue-side view of a job and its attempts."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    job_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    attempts_made: int = 0
    max_attempts: int = 3
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    backoff_delays: list[float] = Field(default_factory=list)
    last_error: str | None = None
    result: Any = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


JobHandler = Callable[[JobRecord], Awaitable[Any]]


class JobQueue(ABC):
    """Durable-queue port. Implementations own retries and backoff."""

    @abstractmethod
    async def enqueue(self, job_type: str, payload: dict[str, Any],
                      options: JobOptions | None = None) -> str: ...
    @abstractmethod
    def on_job(self, job_type: str, handler: JobHandler) -> None: ...
    @abstractmethod
    async def start(self) -> None: ...
    @abstractmethod
    async def stop(self) -> None: ...
    @abstractmethod
    async def get_job(self, job_id: str) -> JobRecord | None: ...
    @abstractmethod
    async def wait_for(self, job_id: str, timeout: float | None = None) -> JobRecord: ...


@dataclass
class QueueMetrics:
    """Counters for queue monitoring."""
    enqueued: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0


class InProcessJobQueue(JobQueue):
    """asyncio-backed job queue with a fixed worker pool.

    Finished jobs stay queryable until more than `retention` newer jobs
    have finished; the oldest are then evicted.
    """

    def __init__(
        self, concurrency: int = 4, poll_timeout: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        retention: int = 1000,
    ) -> None:
        self._concurrency = concurrency
        self._poll_timeout = poll_timeout
        self._sleep = sleep
        self._retention = retention
        self._finished: deque[str] = deque()
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._jobs: dict[str, JobRecord] = {}
        self._done: dict[str, asyncio.Event] = {}
        self._handlers: dict[str, JobHandler] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._pending_retries: set[asyncio.Task[None]] = set()
        self._running = False
        self._closed = False
        self.metrics = QueueMetrics()

    @property
    def is_running(self) -> bool:
        return self._running

    def on_job(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler
        logger.info("job_handler_registered", job_type=job_type)

    async def enqueue(self, job_type: str, payload: dict[str, Any],
                      options: JobOptions | None = None) -> str:
        if self._closed:
            raise QueueError("Job queue is stopped", operation="queue.enqueue",
                             details={"job_type": job_type})
        options = options or JobOptions()
        job = JobRecord(job_type=job_type, payload=payload,
                        max_attempts=options.attempts, backoff=options.backoff)
        self._jobs[job.id] = job
        self._done[job.id] = asyncio.Event()
        await self._queue.put(job.id)
        self.metrics.enqueued += 1
        logger.info("job_enqueued", job_id=job.id, job_type=job_type, attempts=options.attempts)
        return job.id

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._closed = False
        self._workers = [asyncio.create_task(self._worker(i)) for i in range(self._concurrency)]
        logger.info("job_queue_started", workers=self._concurrency)

    async def stop(self) -> None:
        self._running = False
        self._closed = True
        tasks = [*self._workers, *self._pending_retries]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._pending_retries.clear()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        abandoned = [job for job in self._jobs.values() if not job.is_finished]
        for job in abandoned:
            self._finish(job, JobStatus.FAILED, error="Job queue stopped before the job finished")
        logger.info("job_queue_stopped", abandoned=len(abandoned))

    async def get_job(self, job_id: str) -> JobRecord | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def wait_for(self, job_id: str, timeout: float | None = None) -> JobRecord:
        job, event = self._jobs.get(job_id), self._done.get(job_id)
        if job is None or event is None:
            raise NotFoundError("Job", job_id, operation="queue.wait_for")
        await asyncio.wait_for(event.wait(), timeout=timeout)
        return job.model_copy(deep=True)

    async def _worker(self, index: int) -> None:
        while self._running:
            try:
                job_id = await asyncio.wait_for(self._queue.get(), timeout=self._poll_timeout)
            except asyncio.TimeoutError:
                continue
            try:
                job = self._jobs.get(job_id)
                if job is not None and not job.is_finished:
                    await self._run(job)
            finally:
                self._queue.task_done()

    async def _run(self, job: JobRecord) -> None:
        handler = self._handlers.get(job.job_type)
        if handler is None:
            self._finish(job, JobStatus.FAILED, error=f"No handler registered for job type {job.job_type}")
            return
        job.attempts_made += 1
        job.status = JobStatus.RUNNING
        try:
            job.result = await handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.last_error = str(e)
            terminal = isinstance(e, AnalyticsError) and not e.retryable
            if terminal or job.attempts_made >= job.max_attempts:
                self._finish(job, JobStatus.FAILED, error=str(e))
                return
            delay = job.backoff.delay_seconds(job.attempts_made)
            job.backoff_delays.append(delay)
            job.status = JobStatus.RETRYING
            self.metrics.retried += 1
            logger.warning("job_retry_scheduled", job_id=job.id, attempt=job.attempts_made,
                           max_attempts=job.max_attempts, delay_seconds=delay, error=str(e))
            task = asyncio.create_task(self._requeue_after(job.id, delay))
            self._pending_retries.add(task)
            task.add_done_callback(self._pending_retries.discard)
            return
        self._finish(job, JobStatus.COMPLETED)

    async def _requeue_after(self, job_id: str, delay: float) -> None:
        await self._sleep(delay)
        await self._queue.put(job_id)

    def _finish(self, job: JobRecord, status: JobStatus, error: str | None = None) -> None:
        job.status = status
        job.finished_at = datetime.now(timezone.utc)
        if status == JobStatus.COMPLETED:
            self.metrics.completed += 1
            logger.info("job_completed", job_id=job.id, job_type=job.job_type,
                        attempts=job.attempts_made)
        else:
            job.last_error = error
            self.metrics.failed += 1
            logger.error("job_failed", job_id=job.id, job_type=job.job_type,
                         attempts=job.attempts_made, error=error)
        self._done[job.id].set()
        self._finished.append(job.id)
        while len(self._finished) > self._retention:
            evicted = self._finished.popleft()
            self._jobs.pop(evicted, None)
            self._done.pop(evicted, None)
            logger.debug("job_evicted", job_id=evicted)
