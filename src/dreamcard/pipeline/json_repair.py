"""Two-stage parsing of model output into a :class:`ThreePanelPlan`.

Stage one normalizes the raw text into something ``json.loads`` accepts:
chat models wrap JSON in prose or code fences, leave trailing commas, and
occasionally truncate a decimal (``0.``). Stage two validates the decoded
object against the pydantic schema. Either stage failing raises
:class:`~dreamcard.errors.PlanParseError` with itemized issues that the
interpreter feeds back to the model.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from dreamcard.errors import PlanParseError
from dreamcard.models.plan import ThreePanelPlan

_PREVIEW_CHARS = 200

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_TRUNCATED_DECIMAL = re.compile(r":\s*(\d+\.)\s*([,}\]])")


def extract_json_object(text: str) -> str | None:
    """Return the span from the first ``{`` to the last ``}``, or None."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def normalize_json(text: str) -> str:
    """Extract the outermost JSON object and repair common model slips.

    Args:
        text: Raw model output.

    Returns:
        JSON text ready for ``json.loads``.

    Raises:
        PlanParseError: If no JSON object is present.
    """
    candidate = extract_json_object(text)
    if candidate is None:
        raise PlanParseError(
            "No JSON object found in response",
            text[:_PREVIEW_CHARS],
            issues=["Response did not contain a JSON object"],
        )
    candidate = _TRAILING_COMMA.sub(r"\1", candidate)
    candidate = _TRUNCATED_DECIMAL.sub(r": \g<1>0\2", candidate)
    return candidate


def format_validation_errors(error: ValidationError) -> list[str]:
    """Format pydantic validation errors as ``loc: message`` lines."""
    errors = []
    for e in error.errors():
        loc = ".".join(str(part) for part in e["loc"])
        msg = e["msg"]
        errors.append(f"{loc}: {msg}" if loc else msg)
    return errors


def _provided_fields(data: Any) -> set[str]:
    """Top-level and per-panel keys the model actually produced."""
    if not isinstance(data, dict):
        return set()
    provided = {str(k) for k in data}
    panels = data.get("panels")
    if isinstance(panels, list):
        for panel in panels:
            if isinstance(panel, dict):
                provided.update(str(k) for k in panel)
    return provided


def parse_plan(text: str) -> ThreePanelPlan:
    """Parse raw model output into a plan.

    Raises:
        PlanParseError: If the text is not valid JSON after normalization,
            or the decoded object does not match the plan schema.
    """
    normalized = normalize_json(text)
    preview = text[:_PREVIEW_CHARS]

    try:
        data = json.loads(normalized)
    except json.JSONDecodeError as e:
        raise PlanParseError(
            f"Invalid JSON: {e.msg}",
            preview,
            issues=[f"Response was not valid JSON ({e.msg} at line {e.lineno}, column {e.colno})"],
        ) from e

    try:
        return ThreePanelPlan.model_validate(data)
    except ValidationError as e:
        issues = format_validation_errors(e)
        raise PlanParseError(
            f"Plan schema validation failed with {len(issues)} error(s)",
            preview,
            issues=issues,
            provided_fields=_provided_fields(data),
        ) from e
