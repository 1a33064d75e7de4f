"""Queue worker: claims jobs and runs them through the orchestrator.

At most ``concurrency`` jobs run at once in a process, and job starts are
throttled by a sliding-window rate limiter shared by all slots. A finished
execution acknowledges the job; a failed one hands the error to the queue,
which schedules a retry with backoff or fails the job for good.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dreamcard.errors import TransientInfraError
from dreamcard.observability.logging import get_logger, job_log_context
from dreamcard.queue.limiter import RateLimiter

if TYPE_CHECKING:
    from dreamcard.pipeline.orchestrator import PipelineOrchestrator
    from dreamcard.queue.base import JobQueue, QueuedJob

log = get_logger(__name__)

DEFAULT_CONCURRENCY = 2
MAINTENANCE_INTERVAL = 30.0


@dataclass
class WorkerStats:
    """Counters for one worker run."""

    claimed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0


class Worker:
    """Poll a job queue and process jobs with bounded concurrency.

    Args:
        queue: Source of jobs.
        orchestrator: Runs one job delivery.
        concurrency: Maximum jobs in flight.
        limiter: Start-rate limiter (defaults to 10 starts per 60 seconds).
        poll_interval: Seconds to wait when the queue is empty.
        maintenance_interval: Seconds between stalled-job recovery and
            retention passes.
    """

    def __init__(
        self,
        queue: JobQueue,
        orchestrator: PipelineOrchestrator,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        limiter: RateLimiter | None = None,
        poll_interval: float = 1.0,
        maintenance_interval: float = MAINTENANCE_INTERVAL,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._orchestrator = orchestrator
        self.concurrency = concurrency
        self._limiter = limiter or RateLimiter()
        self.poll_interval = poll_interval
        self.maintenance_interval = maintenance_interval
        self.stats = WorkerStats()
        self._stopping = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()
        self._last_maintenance: float | None = None

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def stop(self) -> None:
        """Stop claiming new jobs; running jobs are allowed to finish."""
        if not self._stopping.is_set():
            log.info("worker_stopping", in_flight=self.in_flight)
            self._stopping.set()

    def install_signal_handlers(self) -> None:
        """Stop gracefully on SIGINT and SIGTERM where the platform supports it."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.stop)

    async def _maintain(self) -> None:
        now = time.monotonic()
        last = self._last_maintenance
        if last is not None and now - last < self.maintenance_interval:
            return
        self._last_maintenance = now
        try:
            await self._queue.recover_stalled()
            await self._queue.prune()
        except TransientInfraError as e:
            # retried at the next maintenance interval
            log.warning("queue_maintenance_failed", error=str(e))

    async def _idle(self) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)

    async def process_job(self, job: QueuedJob) -> None:
        """Run one claimed job and report the result to the queue."""
        with job_log_context(job.id, job.payload.project_id):
            try:
                outcome = await self._orchestrator.process(job)
            except Exception as e:
                state = await self._queue.fail(job.id, str(e))
                self.stats.failed += 1
                log.warning(
                    "job_attempt_failed",
                    attempt=job.attempt,
                    max_attempts=job.max_attempts,
                    queue_state=state.state,
                    error=str(e),
                )
                return

            await self._queue.complete(
                job.id,
                {
                    "status": outcome.status,
                    "panels": [panel.image_url for panel in outcome.panels],
                },
            )
            if outcome.status == "skipped":
                self.stats.skipped += 1
            else:
                self.stats.succeeded += 1

    async def run(self, *, once: bool = False) -> WorkerStats:
        """Process jobs until stopped.

        Args:
            once: Drain the jobs that are currently available, then return
                instead of polling.

        Returns:
            Counters for this run.
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        log.info(
            "worker_started",
            concurrency=self.concurrency,
            rate_limit=f"{self._limiter.max_calls}/{self._limiter.period:g}s",
        )

        try:
            while not self._stopping.is_set():
                await self._maintain()
                await semaphore.acquire()
                if self._stopping.is_set():
                    semaphore.release()
                    break

                try:
                    job = await self._queue.claim()
                except TransientInfraError as e:
                    semaphore.release()
                    log.warning("queue_claim_failed", error=str(e))
                    if once:
                        break
                    await self._idle()
                    continue
                if job is None:
                    semaphore.release()
                    if once:
                        break
                    await self._idle()
                    continue

                await self._limiter.acquire()
                self.stats.claimed += 1
                task = asyncio.create_task(self.process_job(job), name=f"job-{job.id}")
                self._tasks.add(task)

                def _done(t: asyncio.Task[None]) -> None:
                    self._tasks.discard(t)
                    semaphore.release()

                task.add_done_callback(_done)
        finally:
            if self._tasks:
                log.info("worker_draining", in_flight=self.in_flight)
                await asyncio.gather(*self._tasks)

        log.info(
            "worker_stopped",
            claimed=self.stats.claimed,
            succeeded=self.stats.succeeded,
            skipped=self.stats.skipped,
            failed=self.stats.failed,
        )
        return self.stats
