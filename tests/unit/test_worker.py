"""Tests for the queue worker."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

from dreamcard.errors import RenderError, TransientInfraError
from dreamcard.models.project import JobPayload, Panel
from dreamcard.pipeline.orchestrator import JobOutcome
from dreamcard.pipeline.worker import Worker
from dreamcard.queue.base import JobState
from dreamcard.queue.limiter import RateLimiter
from dreamcard.queue.sqlite_queue import SqliteJobQueue

if TYPE_CHECKING:
    from dreamcard.queue.base import QueuedJob


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _outcome(job: QueuedJob, status: str = "success") -> JobOutcome:
    panels = [
        Panel(
            id=f"p{i}",
            project_id=job.payload.project_id,
            order=i,
            scene="s",
            caption="c",
            image_url=f"file:///{i}.png",
        )
        for i in range(3 if status == "success" else 0)
    ]
    return JobOutcome(
        job_id=job.id,
        project_id=job.payload.project_id,
        status=status,  # type: ignore[arg-type]
        panels=panels,
    )


def _orchestrator(side_effect: object) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.process = AsyncMock(side_effect=side_effect)
    return orchestrator


def _mock_queue() -> MagicMock:
    queue = MagicMock()
    queue.claim = AsyncMock(return_value=None)
    queue.complete = AsyncMock()
    queue.fail = AsyncMock(return_value=JobState(id="job-1", state="delayed", attempts_made=1))
    queue.recover_stalled = AsyncMock(return_value=0)
    queue.prune = AsyncMock(return_value=0)
    return queue


async def _fill(queue: SqliteJobQueue, count: int) -> None:
    for i in range(count):
        payload = JobPayload(project_id=f"proj-{i}", input_text="x" * 20, style="memory")
        await queue.add(payload, job_id=f"job-{i}")


class TestProcessJob:
    @pytest.mark.asyncio()
    async def test_success_completes_with_panel_urls(self, queued_job: QueuedJob) -> None:
        queue = _mock_queue()
        worker = Worker(queue, _orchestrator(lambda job: _outcome(job)))

        await worker.process_job(queued_job)

        queue.complete.assert_awaited_once_with(
            "job-1",
            {
                "status": "success",
                "panels": ["file:///0.png", "file:///1.png", "file:///2.png"],
            },
        )
        assert worker.stats.succeeded == 1

    @pytest.mark.asyncio()
    async def test_skipped_delivery_is_acknowledged(self, queued_job: QueuedJob) -> None:
        queue = _mock_queue()
        worker = Worker(queue, _orchestrator(lambda job: _outcome(job, "skipped")))

        await worker.process_job(queued_job)

        queue.complete.assert_awaited_once_with("job-1", {"status": "skipped", "panels": []})
        assert worker.stats.skipped == 1

    @pytest.mark.asyncio()
    async def test_failure_goes_to_queue(self, queued_job: QueuedJob) -> None:
        queue = _mock_queue()
        error = RenderError(1, "No image generated")
        worker = Worker(queue, _orchestrator(error))

        await worker.process_job(queued_job)

        queue.fail.assert_awaited_once_with("job-1", str(error))
        queue.complete.assert_not_awaited()
        assert worker.stats.failed == 1


class TestRun:
    @pytest.mark.asyncio()
    async def test_once_drains_available_jobs(self) -> None:
        queue = SqliteJobQueue()
        await _fill(queue, 3)
        worker = Worker(queue, _orchestrator(lambda job: _outcome(job)))

        stats = await worker.run(once=True)

        assert (stats.claimed, stats.succeeded, stats.failed) == (3, 3, 0)
        assert await queue.counts() == {"completed": 3}

    @pytest.mark.asyncio()
    async def test_concurrency_is_bounded(self) -> None:
        queue = SqliteJobQueue()
        await _fill(queue, 5)
        running = 0
        peak = 0

        async def process(job: QueuedJob) -> JobOutcome:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return _outcome(job)

        worker = Worker(queue, _orchestrator(process), concurrency=2)

        stats = await worker.run(once=True)

        assert stats.succeeded == 5
        assert peak == 2

    @pytest.mark.asyncio()
    async def test_starts_are_rate_limited(self) -> None:
        queue = SqliteJobQueue()
        await _fill(queue, 3)
        fake_time = FakeTime()
        limiter = RateLimiter(2, 60.0, clock=fake_time.clock, sleep=fake_time.sleep)
        worker = Worker(queue, _orchestrator(lambda job: _outcome(job)), limiter=limiter)

        stats = await worker.run(once=True)

        assert stats.claimed == 3
        assert fake_time.sleeps == [60.0]

    @pytest.mark.asyncio()
    async def test_failed_job_is_scheduled_for_retry(self) -> None:
        queue = SqliteJobQueue()
        await _fill(queue, 1)
        worker = Worker(queue, _orchestrator(RenderError(2, "No image generated")))

        stats = await worker.run(once=True)

        assert stats.failed == 1
        state = await queue.get_state("job-0")
        assert state is not None
        assert state.state == "delayed"
        assert state.failed_reason == "Panel 3 render failed: No image generated"

    @pytest.mark.asyncio()
    async def test_runs_maintenance(self) -> None:
        queue = _mock_queue()
        worker = Worker(queue, _orchestrator(None))

        await worker.run(once=True)

        queue.recover_stalled.assert_awaited_once()
        queue.prune.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_locked_queue_during_maintenance_keeps_running(
        self, queued_job: QueuedJob
    ) -> None:
        queue = _mock_queue()
        queue.recover_stalled = AsyncMock(
            side_effect=TransientInfraError("Queue unavailable: database is locked")
        )
        queue.claim = AsyncMock(side_effect=[queued_job, None])
        worker = Worker(queue, _orchestrator(lambda job: _outcome(job)))

        stats = await worker.run(once=True)

        assert stats.succeeded == 1
        queue.prune.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_stop_ends_polling(self) -> None:
        queue = _mock_queue()
        worker = Worker(queue, _orchestrator(None), poll_interval=0.01)
        asyncio.get_running_loop().call_later(0.05, worker.stop)

        stats = await asyncio.wait_for(worker.run(), timeout=5)

        assert stats.claimed == 0
        assert queue.claim.await_count >= 1

    @pytest.mark.asyncio()
    async def test_stopped_worker_claims_nothing(self) -> None:
        queue = _mock_queue()
        worker = Worker(queue, _orchestrator(None))
        worker.stop()

        await worker.run()

        queue.claim.assert_not_awaited()


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError, match="concurrency"):
        Worker(_mock_queue(), _orchestrator(None), concurrency=0)


class TestTransientQueueErrors:
    @pytest.mark.asyncio()
    async def test_once_stops_draining(self) -> None:
        queue = _mock_queue()
        queue.claim = AsyncMock(side_effect=TransientInfraError("Queue unavailable: locked"))
        worker = Worker(queue, _orchestrator(None))

        stats = await worker.run(once=True)

        assert stats.claimed == 0
        queue.claim.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_polling_survives_locked_queue(self, queued_job: QueuedJob) -> None:
        queue = _mock_queue()
        pending: list[object] = [TransientInfraError("Queue unavailable: locked"), queued_job]

        async def claim() -> QueuedJob | None:
            if not pending:
                return None
            item = pending.pop(0)
            if isinstance(item, Exception):
                raise item
            return item  # type: ignore[return-value]

        queue.claim = AsyncMock(side_effect=claim)
        worker = Worker(queue, _orchestrator(lambda job: _outcome(job)), poll_interval=0.01)
        asyncio.get_running_loop().call_later(0.1, worker.stop)

        stats = await asyncio.wait_for(worker.run(), timeout=5)

        assert stats.succeeded == 1
        queue.complete.assert_awaited_once()
