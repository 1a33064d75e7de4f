"""Submission and read operations used by the CLI (and any other front end).

Requests are validated completely before anything is written: an invalid
request never leaves a project, job or queue entry behind.
"""

from __future__ import annotations

import os
import uuid
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from dreamcard import __version__
from dreamcard.errors import NotFoundError, SubmissionError
from dreamcard.models.project import (
    GenerationRequest,
    InputLimits,
    JobPayload,
    JobStatus,
    Project,
    StatusReport,
    Submission,
)
from dreamcard.observability.logging import get_logger
from dreamcard.pipeline.progress import stage_of

if TYPE_CHECKING:
    from collections.abc import Mapping

    from dreamcard.config import DreamCardConfig
    from dreamcard.queue.base import JobQueue, JobState
    from dreamcard.storage.base import ProjectStore
    from dreamcard.styles.profiles import StyleRegistry

log = get_logger(__name__)

# Environment variables reported by health(), grouped by concern.
HEALTH_ENV_VARS: dict[str, tuple[str, ...]] = {
    "llm": ("OPENROUTER_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "OLLAMA_HOST"),
    "image": ("REPLICATE_API_TOKEN", "A1111_HOST", "OPENAI_API_KEY"),
    "storage": ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"),
}


def _validation_details(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in e["loc"]), "message": e["msg"]}
        for e in error.errors()
    ]


async def submit_generation(
    request: Mapping[str, Any] | GenerationRequest,
    *,
    store: ProjectStore,
    queue: JobQueue,
    styles: StyleRegistry,
    limits: InputLimits | None = None,
) -> Submission:
    """Validate a request, create its project and job, and enqueue it.

    Args:
        request: Raw fields or an already-built request.
        store: Where the project and job records are created.
        queue: Where the job is enqueued.
        styles: Registry the style id (or alias) must resolve in.
        limits: Accepted input length; defaults to 10..1000 characters.

    Returns:
        The new project and job ids.

    Raises:
        SubmissionError: If the request is invalid. Nothing is persisted.
    """
    data = request.model_dump() if isinstance(request, GenerationRequest) else dict(request)
    try:
        validated = GenerationRequest.model_validate(
            data,
            context={"limits": limits or InputLimits(), "styles": styles.alias_map()},
        )
    except ValidationError as e:
        details = _validation_details(e)
        log.info("submission_rejected", errors=details)
        raise SubmissionError("Invalid request data", details) from e

    project = Project(
        id=str(uuid.uuid4()),
        input_text=validated.input_text,
        style=validated.style,
        symbols=validated.symbols,
        mood=validated.mood,
        visibility=validated.visibility,
        share_slug=uuid.uuid4().hex[:10] if validated.visibility == "public" else None,
    )
    job_id = str(uuid.uuid4())
    await store.create_submission(project, job_id)

    payload = JobPayload(
        project_id=project.id,
        input_text=project.input_text,
        style=project.style,
        symbols=project.symbols,
        mood=project.mood,
    )
    try:
        await queue.add(payload, job_id=job_id)
    except Exception as e:
        log.error("enqueue_failed", project_id=project.id, job_id=job_id, error=str(e))
        await store.mark_failed(project.id, job_id, f"Could not enqueue job: {e}")
        raise

    log.info("submission_accepted", project_id=project.id, job_id=job_id, style=project.style)
    return Submission(project_id=project.id, job_id=job_id)


def _from_queue_state(
    state: JobState, status: JobStatus, progress: float, error: str | None
) -> tuple[JobStatus, float, str | None]:
    """Overlay live queue state on the stored record."""
    if state.state in ("waiting", "delayed"):
        return "queued", progress, None
    if state.state == "active":
        return "running", max(progress, state.progress / 100), None
    if state.state == "completed":
        return "success", 1.0, None
    if state.state == "failed":
        return "failed", progress, state.failed_reason or error or "Unknown error"
    return status, progress, error


async def read_status(
    job_id: str, *, store: ProjectStore, queue: JobQueue | None = None
) -> StatusReport:
    """Status of a job as a polling client sees it.

    The stored record is authoritative; when a queue is given and still
    knows the job, its live state refines status and progress.

    Raises:
        NotFoundError: If the job or its project does not exist.
    """
    job = await store.get_job(job_id)
    if job is None:
        raise NotFoundError("job", job_id)
    project = await store.get_project(job.project_id)
    if project is None:
        raise NotFoundError("project", job.project_id)

    status: JobStatus = project.status
    progress = project.progress
    error = project.error_msg if status == "failed" else None

    if queue is not None:
        state = await queue.get_state(job_id)
        if state is not None:
            status, progress, error = _from_queue_state(state, status, progress, error)

    return StatusReport(
        job_id=job_id,
        project_id=project.id,
        status=status,
        progress=progress,
        stage=stage_of(progress),
        error=error,
    )


async def read_project(project_id: str, *, store: ProjectStore) -> Project:
    """Project with its panels in display order.

    Raises:
        NotFoundError: If the project does not exist.
    """
    project = await store.get_project(project_id)
    if project is None:
        raise NotFoundError("project", project_id)
    return project


def health(config: DreamCardConfig) -> dict[str, Any]:
    """Which providers and credentials are configured (never their values)."""
    checks: dict[str, Any] = {
        "status": "ok",
        "version": __version__,
        "providers": {"llm": config.providers.llm, "image": config.providers.image},
        "render_mode": config.render.mode,
        "database": str(config.storage.database),
        "storage_backend": config.storage.backend,
    }
    for group, names in HEALTH_ENV_VARS.items():
        checks[group] = {name: "configured" if os.getenv(name) else "missing" for name in names}
    return checks
