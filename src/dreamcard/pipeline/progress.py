"""Progress checkpoints and the stage shown to polling clients.

Stored progress is a fraction in ``[0, 1]``; the queue holds the same value
as an integer percentage. The stage is derived from progress alone.
"""

from __future__ import annotations

from typing import Literal

Stage = Literal["parsing", "sketching", "rendering", "collaging"]

PARSING = 0.10
SKETCHING = 0.35
RENDERING = 0.80
DONE = 1.0


def stage_of(progress: float) -> Stage:
    """Map a progress fraction to the stage label clients display."""
    if progress < PARSING:
        return "parsing"
    if progress < SKETCHING:
        return "sketching"
    if progress < RENDERING:
        return "rendering"
    return "collaging"


def rendering_progress(
    done: int, total: int, *, start: float = PARSING, end: float = RENDERING
) -> float:
    """Linear position in ``[start, end]`` after *done* of *total* panels."""
    if total <= 0:
        raise ValueError("total must be positive")
    done = max(0, min(done, total))
    return start + (end - start) * done / total


def to_queue_progress(progress: float) -> int:
    """Fraction to the queue's 0..100 integer scale."""
    return round(max(0.0, min(1.0, progress)) * 100)
