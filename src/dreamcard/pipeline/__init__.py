"""Generation pipeline: interpretation, rendering, orchestration and the worker."""

from dreamcard.pipeline.interpreter import DreamInterpreter
from dreamcard.pipeline.json_repair import normalize_json, parse_plan
from dreamcard.pipeline.orchestrator import JobOutcome, PipelineOrchestrator
from dreamcard.pipeline.progress import (
    PARSING,
    RENDERING,
    SKETCHING,
    rendering_progress,
    stage_of,
    to_queue_progress,
)
from dreamcard.pipeline.renderer import PanelRenderer
from dreamcard.pipeline.worker import Worker, WorkerStats

__all__ = [
    "PARSING",
    "RENDERING",
    "SKETCHING",
    "DreamInterpreter",
    "JobOutcome",
    "PanelRenderer",
    "PipelineOrchestrator",
    "Worker",
    "WorkerStats",
    "normalize_json",
    "parse_plan",
    "rendering_progress",
    "stage_of",
    "to_queue_progress",
]
