"""
Unit tests for the in-process job queue.
"""
import asyncio

import pytest

from prompt_analytics.exceptions import NotFoundError, QueueError, ValidationError
from prompt_analytics.queue import BackoffPolicy, InProcessJobQueue, JobOptions, JobStatus

WAIT = 5.0


class Flaky:
    """Handler that fails a fixed number of times before succeeding."""

    def __init__(self, failures, exc_factory=lambda: RuntimeError("transient")):
        self.failures = failures
        self.exc_factory = exc_factory
        self.calls = 0

    async def __call__(self, job):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_factory()
        return f"done:{job.payload['n']}"


class TestBackoffPolicy:
    """Tests for exponential backoff."""

    def test_delays(self):
        policy = BackoffPolicy(delay_ms=1000, factor=2)
        assert [policy.delay_seconds(a) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestInProcessJobQueue:
    """Tests for job execution and retries."""

    @pytest.mark.asyncio
    async def test_successful_job(self, job_queue):
        handler = Flaky(0)
        job_queue.on_job("work", handler)

        job_id = await job_queue.enqueue("work", {"n": 1})
        job = await job_queue.wait_for(job_id, timeout=WAIT)

        assert job.status == JobStatus.COMPLETED
        assert job.result == "done:1"
        assert job.attempts_made == 1
        assert job.finished_at is not None

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self, job_queue, sleep):
        handler = Flaky(2)
        job_queue.on_job("work", handler)

        job_id = await job_queue.enqueue("work", {"n": 2}, JobOptions(attempts=3))
        job = await job_queue.wait_for(job_id, timeout=WAIT)

        assert job.status == JobStatus.COMPLETED
        assert job.attempts_made == 3
        assert job.backoff_delays == [1.0, 2.0]
        assert sleep.delays == [1.0, 2.0]
        assert handler.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts_fail(self, job_queue):
        job_queue.on_job("work", Flaky(10))

        job_id = await job_queue.enqueue("work", {"n": 3}, JobOptions(attempts=3))
        job = await job_queue.wait_for(job_id, timeout=WAIT)

        assert job.status == JobStatus.FAILED
        assert job.attempts_made == 3
        assert job.last_error == "transient"
        assert job_queue.metrics.failed == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self, job_queue):
        handler = Flaky(10, lambda: ValidationError("bad payload"))
        job_queue.on_job("work", handler)

        job_id = await job_queue.enqueue("work", {"n": 4})
        job = await job_queue.wait_for(job_id, timeout=WAIT)

        assert job.status == JobStatus.FAILED
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_unregistered_job_type_fails(self, job_queue):
        job_id = await job_queue.enqueue("unknown", {})
        job = await job_queue.wait_for(job_id, timeout=WAIT)

        assert job.status == JobStatus.FAILED
        assert "No handler" in job.last_error

    @pytest.mark.asyncio
    async def test_get_job_returns_snapshot(self, job_queue):
        job_queue.on_job("work", Flaky(0))
        job_id = await job_queue.enqueue("work", {"n": 5})
        await job_queue.wait_for(job_id, timeout=WAIT)

        snapshot = await job_queue.get_job(job_id)
        snapshot.payload["n"] = 99

        assert (await job_queue.get_job(job_id)).payload["n"] == 5
        assert await job_queue.get_job("missing") is None

    @pytest.mark.asyncio
    async def test_wait_for_unknown_job(self, job_queue):
        with pytest.raises(NotFoundError):
            await job_queue.wait_for("missing", timeout=0.1)

    @pytest.mark.asyncio
    async def test_enqueue_after_stop_rejected(self, sleep):
        queue = InProcessJobQueue(concurrency=1, poll_timeout=0.05, sleep=sleep)
        await queue.start()
        await queue.stop()

        with pytest.raises(QueueError):
            await queue.enqueue("work", {})
        assert not queue.is_running


class Blocking:
    """Handler that parks until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, job):
        self.started.set()
        await self.release.wait()
        return "released"


class TestQueueLifecycle:
    """Tests for job retention and shutdown."""

    @pytest.mark.asyncio
    async def test_finished_jobs_evicted_beyond_retention(self, sleep):
        queue = InProcessJobQueue(concurrency=1, poll_timeout=0.05, sleep=sleep, retention=2)
        queue.on_job("work", Flaky(0))
        await queue.start()
        try:
            job_ids = []
            for n in range(3):
                job_id = await queue.enqueue("work", {"n": n})
                await queue.wait_for(job_id, timeout=WAIT)
                job_ids.append(job_id)

            assert await queue.get_job(job_ids[0]) is None
            with pytest.raises(NotFoundError):
                await queue.wait_for(job_ids[0], timeout=0.1)
            assert (await queue.get_job(job_ids[2])).status == JobStatus.COMPLETED
        finally:
            await queue.stop()

    @pytest.mark.asyncio
    async def test_stop_fails_unfinished_jobs_and_wakes_waiters(self, sleep):
        queue = InProcessJobQueue(concurrency=1, poll_timeout=0.05, sleep=sleep)
        handler = Blocking()
        queue.on_job("work", handler)
        await queue.start()

        running_id = await queue.enqueue("work", {})
        waiting_id = await queue.enqueue("work", {})
        await asyncio.wait_for(handler.started.wait(), timeout=WAIT)
        waiter = asyncio.create_task(queue.wait_for(running_id))

        await queue.stop()
        running = await asyncio.wait_for(waiter, timeout=WAIT)

        assert running.status == JobStatus.FAILED
        assert "stopped" in running.last_error
        assert (await queue.get_job(waiting_id)).status == JobStatus.FAILED
