"""Job queue protocol and types.

The queue is at-least-once: a job may be delivered again after a worker
failure, an expired lease, or a failed attempt with retries left. Whole-job
retries and their backoff belong to the queue; the pipeline itself never
re-enqueues.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dreamcard.models.project import JobPayload

QueueState = Literal["waiting", "delayed", "active", "completed", "failed"]

QUEUE_NAME = "image-generation"


@dataclass(frozen=True)
class JobOptions:
    """Retry and retention policy applied to every job in a queue.

    Attributes:
        attempts: Total deliveries allowed before a job is terminally failed.
        backoff_delay: Base delay in seconds; attempt *n* waits
            ``backoff_delay * 2 ** (n - 1)``.
        keep_completed_seconds: Completed jobs older than this are pruned.
        keep_completed_count: At most this many completed jobs are kept.
        keep_failed_seconds: Failed jobs older than this are pruned.
        lease_seconds: How long a claimed job stays active without a
            heartbeat before it is considered stalled and redelivered.
    """

    attempts: int = 2
    backoff_delay: float = 5.0
    keep_completed_seconds: float = 3600.0
    keep_completed_count: int = 100
    keep_failed_seconds: float = 7200.0
    lease_seconds: float = 600.0

    def backoff_for(self, failures: int) -> float:
        """Delay before the next delivery after *failures* failed attempts."""
        return self.backoff_delay * 2 ** max(failures - 1, 0)


@dataclass(frozen=True)
class QueuedJob:
    """A job claimed by a worker.

    Attributes:
        id: Queue job id (also the Job record id).
        payload: Submission data the pipeline needs.
        attempt: 1-based delivery number of this claim.
        max_attempts: Deliveries allowed in total.
    """

    id: str
    payload: JobPayload
    attempt: int = 1
    max_attempts: int = 2

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


@dataclass(frozen=True)
class JobState:
    """Live queue view of one job."""

    id: str
    state: QueueState
    progress: int = 0
    attempts_made: int = 0
    failed_reason: str | None = None
    available_at: float | None = None


@runtime_checkable
class JobQueue(Protocol):
    """Durable queue of generation jobs."""

    async def add(self, payload: JobPayload, *, job_id: str) -> str:
        """Enqueue a job under a producer-assigned id. Re-adding an id is a no-op."""
        ...

    async def claim(self) -> QueuedJob | None:
        """Lease the next available job, or return None if there is none."""
        ...

    async def update_progress(self, job_id: str, progress: int) -> None:
        """Overwrite the job's 0..100 progress and extend its lease."""
        ...

    async def complete(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        """Acknowledge successful processing."""
        ...

    async def fail(self, job_id: str, reason: str) -> JobState:
        """Record a failed attempt; schedules a retry or fails the job terminally."""
        ...

    async def get_state(self, job_id: str) -> JobState | None:
        """Current queue state, or None if unknown or pruned."""
        ...

    async def recover_stalled(self) -> int:
        """Count expired leases as failed attempts; requeue or fail those jobs."""
        ...

    async def prune(self) -> int:
        """Remove finished jobs past their retention."""
        ...
