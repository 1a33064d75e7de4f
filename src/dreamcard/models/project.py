"""Pydantic models for persisted projects, panels and jobs.

A *Project* is the user-facing record; a *Job* is its 1:1 background
processing record, keyed by the id the queue knows it under.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, ValidationInfo, field_validator

JobStatus = Literal["queued", "running", "success", "failed"]
Visibility = Literal["private", "public"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "failed"})


def utc_now() -> datetime:
    """Timezone-aware current time used for all record timestamps."""
    return datetime.now(UTC)


class Panel(BaseModel):
    """One rendered panel of a project."""

    id: str
    project_id: str
    order: int = Field(ge=0, le=2, description="Zero-based panel index")
    scene: str
    caption: str
    image_url: str | None = None
    sketch_url: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def position(self) -> int:
        """One-based display position."""
        return self.order + 1


class Project(BaseModel):
    """A dream card project and its generation state."""

    id: str
    input_text: str
    style: str
    symbols: list[str] = Field(default_factory=list)
    mood: str | None = None
    visibility: Visibility = "private"
    status: JobStatus = "queued"
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    error_msg: str | None = None
    panels: list[Panel] = Field(default_factory=list)
    collage_url: str | None = None
    video_url: str | None = None
    share_slug: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Job(BaseModel):
    """Background processing record mirroring the project's status and progress."""

    id: str
    project_id: str
    status: JobStatus = "queued"
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    error_msg: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class JobPayload(BaseModel):
    """Queue payload: everything the worker needs to start without a read."""

    project_id: str
    input_text: str
    style: str
    symbols: list[str] = Field(default_factory=list)
    mood: str | None = None


@dataclass(frozen=True)
class InputLimits:
    """Accepted source text length, inclusive on both ends."""

    min_length: int = 10
    max_length: int = 1000


class GenerationRequest(BaseModel):
    """Client submission, validated before anything is persisted.

    Pass ``context={"limits": InputLimits(...), "styles": {...}}`` to
    ``model_validate`` to check the text length against configured limits
    and to resolve the style id (aliases included) against the registry.
    """

    input_text: str
    style: str
    symbols: list[str] = Field(default_factory=list)
    mood: str | None = None
    visibility: Visibility = "private"

    @field_validator("input_text")
    @classmethod
    def _check_length(cls, value: str, info: ValidationInfo) -> str:
        limits: InputLimits = (info.context or {}).get("limits") or InputLimits()
        if len(value) < limits.min_length:
            raise ValueError(f"must be at least {limits.min_length} characters")
        if len(value) > limits.max_length:
            raise ValueError(f"must be at most {limits.max_length} characters")
        return value

    @field_validator("style")
    @classmethod
    def _check_style(cls, value: str, info: ValidationInfo) -> str:
        styles: dict[str, str] | None = (info.context or {}).get("styles")
        if styles is None:
            return value
        canonical = styles.get(value.strip().lower())
        if canonical is None:
            allowed = ", ".join(sorted(set(styles.values())))
            raise ValueError(f"unknown style '{value}' (expected one of: {allowed})")
        return canonical

    @field_validator("symbols")
    @classmethod
    def _clean_symbols(cls, value: list[str]) -> list[str]:
        return [s.strip().lower() for s in value if s.strip()]


class Submission(BaseModel):
    """Identifiers returned to the client after a successful submission."""

    project_id: str
    job_id: str


class StatusReport(BaseModel):
    """What a polling client sees for a job."""

    job_id: str
    project_id: str
    status: JobStatus
    progress: float
    stage: str
    error: str | None = None
