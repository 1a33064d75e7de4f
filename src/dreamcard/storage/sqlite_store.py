"""SQLite-backed project, job and panel storage.

SqliteProjectStore implements the ProjectStore protocol with stdlib sqlite3.
The methods are coroutines so callers treat every write as an await point,
but each one is a single short local statement and runs inline.

Panels are unique per ``(project_id, panel_order)``: when a job is delivered
again after a failure, re-rendered panels replace the earlier rows instead
of duplicating them.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dreamcard.errors import StorageError
from dreamcard.models.project import Job, Panel, Project, utc_now

if TYPE_CHECKING:
    from collections.abc import Iterator

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS projects (
    id          TEXT PRIMARY KEY,
    input_text  TEXT NOT NULL,
    style       TEXT NOT NULL,
    symbols     JSON NOT NULL DEFAULT '[]',
    mood        TEXT,
    visibility  TEXT NOT NULL DEFAULT 'private',
    status      TEXT NOT NULL DEFAULT 'queued',
    progress    REAL NOT NULL DEFAULT 0,
    error_msg   TEXT,
    collage_url TEXT,
    video_url   TEXT,
    share_slug  TEXT UNIQUE,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_projects_created ON projects(created_at);

CREATE TABLE IF NOT EXISTS jobs (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL UNIQUE REFERENCES projects(id) ON DELETE CASCADE,
    status      TEXT NOT NULL DEFAULT 'queued',
    progress    REAL NOT NULL DEFAULT 0,
    error_msg   TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS panels (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    panel_order INTEGER NOT NULL,
    scene       TEXT NOT NULL,
    caption     TEXT NOT NULL,
    image_url   TEXT,
    sketch_url  TEXT,
    created_at  TEXT NOT NULL,
    UNIQUE (project_id, panel_order)
);
"""


class SqliteProjectStore:
    """SQLite store for projects, jobs and panels."""

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        _conn: sqlite3.Connection | None = None,
    ) -> None:
        """Open or create the database.

        Args:
            db_path: Path to a ``.db`` file, or ``":memory:"``.
            _conn: Pre-existing connection (for testing). If provided,
                   *db_path* is ignored.
        """
        if _conn is not None:
            self._conn = _conn
        else:
            if isinstance(db_path, Path):
                db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(db_path),
                isolation_level=None,  # autocommit; transactions are explicit
            )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        self._conn.execute("BEGIN")
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    # -- row mapping --------------------------------------------------------

    @staticmethod
    def _panel_from_row(row: sqlite3.Row) -> Panel:
        return Panel(
            id=row["id"],
            project_id=row["project_id"],
            order=row["panel_order"],
            scene=row["scene"],
            caption=row["caption"],
            image_url=row["image_url"],
            sketch_url=row["sketch_url"],
            created_at=row["created_at"],
        )

    def _project_from_row(self, row: sqlite3.Row) -> Project:
        data: dict[str, Any] = dict(row)
        data["symbols"] = json.loads(data["symbols"] or "[]")
        data["panels"] = self._fetch_panels(data["id"])
        return Project.model_validate(data)

    @staticmethod
    def _job_from_row(row: sqlite3.Row) -> Job:
        return Job.model_validate(dict(row))

    def _fetch_panels(self, project_id: str) -> list[Panel]:
        rows = self._conn.execute(
            "SELECT * FROM panels WHERE project_id = ? ORDER BY panel_order",
            (project_id,),
        ).fetchall()
        return [self._panel_from_row(r) for r in rows]

    def _set_state(
        self,
        project_id: str,
        job_id: str,
        *,
        status: str | None = None,
        progress: float | None = None,
        error_msg: str | None = None,
        clear_error: bool = False,
    ) -> None:
        assignments: list[str] = ["updated_at = ?"]
        values: list[Any] = [utc_now().isoformat()]
        if status is not None:
            assignments.append("status = ?")
            values.append(status)
        if progress is not None:
            assignments.append("progress = ?")
            values.append(progress)
        if error_msg is not None:
            assignments.append("error_msg = ?")
            values.append(error_msg)
        elif clear_error:
            assignments.append("error_msg = NULL")
        clause = ", ".join(assignments)

        with self._transaction() as conn:
            cur = conn.execute(
                f"UPDATE projects SET {clause} WHERE id = ?",  # noqa: S608 - fixed column names
                (*values, project_id),
            )
            if cur.rowcount == 0:
                raise StorageError(project_id, "project not found")
            conn.execute(
                f"UPDATE jobs SET {clause} WHERE id = ?",  # noqa: S608 - fixed column names
                (*values, job_id),
            )

    # -- submissions ----------------------------------------------------------

    async def create_submission(self, project: Project, job_id: str) -> Job:
        """Insert a project and its job atomically.

        Raises:
            StorageError: If the project or job id already exists.
        """
        now = utc_now().isoformat()
        job = Job(id=job_id, project_id=project.id, status=project.status)
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO projects (id, input_text, style, symbols, mood, visibility,"
                    " status, progress, share_slug, created_at, updated_at)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        project.id,
                        project.input_text,
                        project.style,
                        json.dumps(project.symbols),
                        project.mood,
                        project.visibility,
                        project.status,
                        project.progress,
                        project.share_slug,
                        now,
                        now,
                    ),
                )
                conn.execute(
                    "INSERT INTO jobs (id, project_id, status, progress, created_at, updated_at)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    (job.id, job.project_id, job.status, job.progress, now, now),
                )
        except sqlite3.IntegrityError as e:
            raise StorageError(project.id, f"project or job already exists: {e}") from e
        return job

    # -- reads ------------------------------------------------------------------

    async def get_project(self, project_id: str) -> Project | None:
        row = self._conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return self._project_from_row(row) if row else None

    async def list_projects(self, limit: int = 20) -> list[Project]:
        """Most recently created projects first."""
        rows = self._conn.execute(
            "SELECT * FROM projects ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)
        ).fetchall()
        return [self._project_from_row(r) for r in rows]

    async def get_job(self, job_id: str) -> Job | None:
        row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._job_from_row(row) if row else None

    async def get_job_by_project(self, project_id: str) -> Job | None:
        row = self._conn.execute(
            "SELECT * FROM jobs WHERE project_id = ?", (project_id,)
        ).fetchone()
        return self._job_from_row(row) if row else None

    async def get_project_by_job(self, job_id: str) -> Project | None:
        row = self._conn.execute(
            "SELECT p.* FROM projects p JOIN jobs j ON j.project_id = p.id WHERE j.id = ?",
            (job_id,),
        ).fetchone()
        return self._project_from_row(row) if row else None

    async def list_panels(self, project_id: str) -> list[Panel]:
        return self._fetch_panels(project_id)

    # -- state transitions ----------------------------------------------------

    async def mark_running(self, project_id: str, job_id: str) -> None:
        """Start an execution: status running, progress reset, previous error cleared."""
        self._set_state(project_id, job_id, status="running", progress=0.0, clear_error=True)

    async def update_progress(self, project_id: str, job_id: str, progress: float) -> None:
        self._set_state(project_id, job_id, progress=progress)

    async def mark_success(self, project_id: str, job_id: str) -> None:
        self._set_state(project_id, job_id, status="success", progress=1.0, clear_error=True)

    async def mark_failed(self, project_id: str, job_id: str, error_msg: str) -> None:
        """Record a failure; progress stays where the execution stopped."""
        self._set_state(project_id, job_id, status="failed", error_msg=error_msg)

    # -- panels -------------------------------------------------------------------

    async def add_panel(self, panel: Panel) -> Panel:
        """Insert a panel, replacing any earlier row for the same position."""
        self._conn.execute(
            "INSERT INTO panels (id, project_id, panel_order, scene, caption, image_url,"
            " sketch_url, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT (project_id, panel_order) DO UPDATE SET"
            " id = excluded.id, scene = excluded.scene, caption = excluded.caption,"
            " image_url = excluded.image_url, sketch_url = excluded.sketch_url,"
            " created_at = excluded.created_at",
            (
                panel.id,
                panel.project_id,
                panel.order,
                panel.scene,
                panel.caption,
                panel.image_url,
                panel.sketch_url,
                panel.created_at.isoformat(),
            ),
        )
        return panel

    async def update_panel_image(self, project_id: str, order: int, image_url: str) -> None:
        """Set a panel's image URL in the final pass of two-stage rendering.

        Raises:
            StorageError: If the panel does not exist.
        """
        cur = self._conn.execute(
            "UPDATE panels SET image_url = ? WHERE project_id = ? AND panel_order = ?",
            (image_url, project_id, order),
        )
        if cur.rowcount == 0:
            raise StorageError(f"{project_id}/{order}", "panel not found")
