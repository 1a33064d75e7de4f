"""Durable job queue and start-rate limiting."""

from dreamcard.queue.base import (
    QUEUE_NAME,
    JobOptions,
    JobQueue,
    JobState,
    QueuedJob,
    QueueState,
)
from dreamcard.queue.limiter import RateLimiter
from dreamcard.queue.sqlite_queue import SqliteJobQueue

__all__ = [
    "QUEUE_NAME",
    "JobOptions",
    "JobQueue",
    "JobState",
    "QueueState",
    "QueuedJob",
    "RateLimiter",
    "SqliteJobQueue",
]
