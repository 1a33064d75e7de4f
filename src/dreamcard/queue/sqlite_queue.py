"""SQLite-backed durable job queue.

Claims run inside ``BEGIN IMMEDIATE`` so several worker processes can share
one database file without double-claiming. A claimed job holds a lease;
progress updates extend it, and leases that expire (a crashed worker) count as a
failed attempt in :meth:`SqliteJobQueue.recover_stalled`.
"""

from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dreamcard.errors import TransientInfraError
from dreamcard.models.project import JobPayload
from dreamcard.observability.logging import get_logger
from dreamcard.queue.base import QUEUE_NAME, JobOptions, JobState, QueuedJob

if TYPE_CHECKING:
    from collections.abc import Callable

log = get_logger(__name__)

STALLED_REASON = "job stalled"

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS queue_jobs (
    id               TEXT PRIMARY KEY,
    queue            TEXT NOT NULL,
    payload          JSON NOT NULL,
    state            TEXT NOT NULL DEFAULT 'waiting',
    progress         INTEGER NOT NULL DEFAULT 0,
    attempts_made    INTEGER NOT NULL DEFAULT 0,
    max_attempts     INTEGER NOT NULL,
    available_at     REAL NOT NULL,
    lease_expires_at REAL,
    failed_reason    TEXT,
    result           JSON,
    created_at       REAL NOT NULL,
    finished_at      REAL
);
CREATE INDEX IF NOT EXISTS idx_queue_jobs_ready ON queue_jobs(queue, state, available_at);
"""


class SqliteJobQueue:
    """Durable at-least-once job queue stored in SQLite.

    Args:
        db_path: Path to a ``.db`` file, or ``":memory:"``.
        name: Queue name; several queues can share one database.
        options: Retry and retention policy.
        clock: Wall-clock source in epoch seconds (injectable for tests).
        _conn: Pre-existing connection (for testing).
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        name: str = QUEUE_NAME,
        options: JobOptions | None = None,
        clock: Callable[[], float] = time.time,
        _conn: sqlite3.Connection | None = None,
    ) -> None:
        if _conn is not None:
            self._conn = _conn
        else:
            if isinstance(db_path, Path):
                db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_path), isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(_SCHEMA)
        self.name = name
        self.options = options or JobOptions()
        self._clock = clock

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _state_from_row(row: sqlite3.Row) -> JobState:
        return JobState(
            id=row["id"],
            state=row["state"],
            progress=row["progress"],
            attempts_made=row["attempts_made"],
            failed_reason=row["failed_reason"],
            available_at=row["available_at"],
        )

    async def add(self, payload: JobPayload, *, job_id: str) -> str:
        now = self._clock()
        cur = self._conn.execute(
            "INSERT OR IGNORE INTO queue_jobs (id, queue, payload, max_attempts, available_at,"
            " created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (job_id, self.name, payload.model_dump_json(), self.options.attempts, now, now),
        )
        if cur.rowcount == 0:
            log.info("queue_job_deduplicated", job_id=job_id)
        else:
            log.info("queue_job_added", job_id=job_id, project_id=payload.project_id)
        return job_id

    def _begin(self) -> None:
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            # another process holds the write lock past the busy timeout
            raise TransientInfraError(f"Queue unavailable: {e}") from e

    async def claim(self) -> QueuedJob | None:
        now = self._clock()
        self._begin()
        try:
            row = self._conn.execute(
                "SELECT * FROM queue_jobs WHERE queue = ? AND state IN ('waiting', 'delayed')"
                " AND available_at <= ? ORDER BY available_at, created_at, rowid LIMIT 1",
                (self.name, now),
            ).fetchone()
            if row is None:
                self._conn.execute("COMMIT")
                return None
            self._conn.execute(
                "UPDATE queue_jobs SET state = 'active', lease_expires_at = ? WHERE id = ?",
                (now + self.options.lease_seconds, row["id"]),
            )
            self._conn.execute("COMMIT")
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise

        return QueuedJob(
            id=row["id"],
            payload=JobPayload.model_validate_json(row["payload"]),
            attempt=row["attempts_made"] + 1,
            max_attempts=row["max_attempts"],
        )

    async def update_progress(self, job_id: str, progress: int) -> None:
        progress = max(0, min(100, int(progress)))
        self._conn.execute(
            "UPDATE queue_jobs SET progress = ?, lease_expires_at = ?"
            " WHERE id = ? AND state = 'active'",
            (progress, self._clock() + self.options.lease_seconds, job_id),
        )

    async def complete(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        self._conn.execute(
            "UPDATE queue_jobs SET state = 'completed', progress = 100, result = ?,"
            " finished_at = ?, lease_expires_at = NULL, failed_reason = NULL WHERE id = ?",
            (json.dumps(result) if result is not None else None, self._clock(), job_id),
        )
        log.debug("queue_job_completed", job_id=job_id)

    async def fail(self, job_id: str, reason: str) -> JobState:
        """Record a failed attempt.

        Returns:
            The new state: ``delayed`` when a retry is scheduled, else ``failed``.

        Raises:
            KeyError: If the job is unknown.
        """
        row = self._conn.execute("SELECT * FROM queue_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise KeyError(job_id)

        now = self._clock()
        failures = row["attempts_made"] + 1
        if failures < row["max_attempts"]:
            available_at = now + self.options.backoff_for(failures)
            self._conn.execute(
                "UPDATE queue_jobs SET state = 'delayed', attempts_made = ?, available_at = ?,"
                " lease_expires_at = NULL, failed_reason = ? WHERE id = ?",
                (failures, available_at, reason, job_id),
            )
            log.info("queue_job_retry_scheduled", job_id=job_id, attempt=failures, at=available_at)
        else:
            self._conn.execute(
                "UPDATE queue_jobs SET state = 'failed', attempts_made = ?, finished_at = ?,"
                " lease_expires_at = NULL, failed_reason = ? WHERE id = ?",
                (failures, now, reason, job_id),
            )
            log.warning("queue_job_failed", job_id=job_id, attempts=failures, reason=reason)

        state = await self.get_state(job_id)
        assert state is not None
        return state

    async def get_state(self, job_id: str) -> JobState | None:
        row = self._conn.execute("SELECT * FROM queue_jobs WHERE id = ?", (job_id,)).fetchone()
        return self._state_from_row(row) if row else None

    async def recover_stalled(self) -> int:
        """Handle active jobs whose lease expired.

        A stall counts as a failed attempt: the job returns to ``waiting``
        while attempts remain, and is failed with ``job stalled`` otherwise.

        Returns:
            Number of stalled jobs handled.

        Raises:
            TransientInfraError: If the database is locked by another process.
        """
        now = self._clock()
        self._begin()
        try:
            exhausted = self._conn.execute(
                "UPDATE queue_jobs SET state = 'failed', attempts_made = attempts_made + 1,"
                " finished_at = ?, lease_expires_at = NULL, failed_reason = ?"
                " WHERE queue = ? AND state = 'active' AND lease_expires_at < ?"
                " AND attempts_made + 1 >= max_attempts",
                (now, STALLED_REASON, self.name, now),
            ).rowcount
            requeued = self._conn.execute(
                "UPDATE queue_jobs SET state = 'waiting', attempts_made = attempts_made + 1,"
                " available_at = ?, lease_expires_at = NULL, failed_reason = ?"
                " WHERE queue = ? AND state = 'active' AND lease_expires_at < ?",
                (now, STALLED_REASON, self.name, now),
            ).rowcount
            self._conn.execute("COMMIT")
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise

        if requeued:
            log.warning("queue_stalled_jobs_recovered", count=requeued)
        if exhausted:
            log.warning("queue_stalled_jobs_failed", count=exhausted)
        return requeued + exhausted

    async def prune(self) -> int:
        """Apply retention to finished jobs.

        Returns:
            Number of jobs removed.
        """
        now = self._clock()
        opts = self.options
        self._begin()
        try:
            removed = self._prune_finished(now, opts)
            self._conn.execute("COMMIT")
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        if removed:
            log.debug("queue_pruned", removed=removed)
        return removed

    def _prune_finished(self, now: float, opts: JobOptions) -> int:
        removed = self._conn.execute(
            "DELETE FROM queue_jobs WHERE queue = ? AND ("
            "(state = 'completed' AND finished_at < ?) OR (state = 'failed' AND finished_at < ?))",
            (self.name, now - opts.keep_completed_seconds, now - opts.keep_failed_seconds),
        ).rowcount
        removed += self._conn.execute(
            "DELETE FROM queue_jobs WHERE queue = ? AND state = 'completed' AND id NOT IN ("
            "SELECT id FROM queue_jobs WHERE queue = ? AND state = 'completed'"
            " ORDER BY finished_at DESC LIMIT ?)",
            (self.name, self.name, opts.keep_completed_count),
        ).rowcount
        return removed

    async def counts(self) -> dict[str, int]:
        """Number of jobs per state."""
        rows = self._conn.execute(
            "SELECT state, COUNT(*) AS n FROM queue_jobs WHERE queue = ? GROUP BY state",
            (self.name,),
        ).fetchall()
        return {row["state"]: row["n"] for row in rows}
