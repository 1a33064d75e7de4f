"""Pydantic models for plans and persisted records."""

from dreamcard.models.plan import DISTANCE_ORDER, Compose, Distance, PanelPlan, ThreePanelPlan
from dreamcard.models.project import (
    TERMINAL_STATUSES,
    GenerationRequest,
    InputLimits,
    Job,
    JobPayload,
    JobStatus,
    Panel,
    Project,
    StatusReport,
    Submission,
    Visibility,
    utc_now,
)

__all__ = [
    "DISTANCE_ORDER",
    "TERMINAL_STATUSES",
    "Compose",
    "Distance",
    "GenerationRequest",
    "InputLimits",
    "Job",
    "JobPayload",
    "JobStatus",
    "Panel",
    "PanelPlan",
    "Project",
    "StatusReport",
    "Submission",
    "ThreePanelPlan",
    "Visibility",
    "utc_now",
]
