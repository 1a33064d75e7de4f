"""Corrective feedback for interpretation retries.

Feedback is action-first: the model reads what to do before the itemized
list of what went wrong. Field-name slips in malformed output (``palette``
for ``global_palette``) are detected by suffix, synonym or fuzzy match and
turned into explicit rename instructions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dreamcard.errors import PlanParseError
    from dreamcard.validation.quality import QualityReport

PLAN_FIELDS: frozenset[str] = frozenset(
    {
        "abstraction_level",
        "global_palette",
        "panels",
        "scene",
        "caption",
        "compose",
        "distance",
        "concrete_ratio",
    }
)

# Names models tend to use instead of the expected plan fields.
FIELD_SYNONYMS: dict[str, list[str]] = {
    "scene": ["description", "prompt", "visual", "image_prompt"],
    "caption": ["title", "subtitle", "text", "tagline"],
    "compose": ["composition", "layout", "framing"],
    "distance": ["shot", "shot_type", "shot_distance", "camera"],
    "global_palette": ["palette", "colors", "color_palette", "colour_palette"],
    "abstraction_level": ["abstraction", "abstractness", "abstract_level"],
    "concrete_ratio": ["concreteness", "concrete"],
}

QUALITY_RECOVERY_ACTION = (
    "Please regenerate with MORE ABSTRACT language, HIGHER abstraction_level (>= 0.70), "
    "and LOWER concrete_ratio (<= 0.25 per panel).\n"
    "Focus on COLOR FIELDS, LIGHT QUALITIES, and ATMOSPHERIC DEPTH rather than objects."
)

PARSE_RECOVERY_ACTION = (
    "Respond with exactly ONE valid JSON object following the schema, "
    "with no commentary before or after it."
)


def _similarity_ratio(a: str, b: str) -> float:
    return SequenceMatcher(None, a.lower(), b.lower()).ratio()


def find_field_correction(
    provided_field: str,
    expected_fields: frozenset[str] | set[str] = PLAN_FIELDS,
    threshold: float = 0.75,
) -> str | None:
    """Suggest the expected field a misnamed field was probably meant to be.

    Checks, in order: suffix/prefix match, known synonyms, fuzzy similarity.

    Args:
        provided_field: Field name found in the output.
        expected_fields: Valid field names.
        threshold: Minimum similarity ratio for the fuzzy match.

    Returns:
        The suggested field name, or None if there is no plausible match.
    """
    provided_lower = provided_field.lower()
    if provided_lower in expected_fields:
        return None

    for expected in sorted(expected_fields):
        if provided_lower.endswith(f"_{expected}") or provided_lower.startswith(f"{expected}_"):
            return expected

    for expected, synonyms in FIELD_SYNONYMS.items():
        if expected in expected_fields and provided_lower in synonyms:
            return expected

    best_match = None
    best_ratio = threshold
    for expected in sorted(expected_fields):
        ratio = _similarity_ratio(provided_lower, expected)
        if ratio > best_ratio:
            best_ratio = ratio
            best_match = expected
    return best_match


@dataclass
class RetryFeedback:
    """Feedback appended to the source text for the next attempt.

    Attributes:
        recovery_action: Directive the model reads first.
        issues: Itemized problems with the previous attempt.
        field_corrections: Map of provided field to rename instruction.
    """

    recovery_action: str
    issues: list[str] = field(default_factory=list)
    field_corrections: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_quality_report(cls, report: QualityReport) -> RetryFeedback:
        """Feedback for a plan that parsed but failed the quality gate."""
        return cls(recovery_action=QUALITY_RECOVERY_ACTION, issues=list(report.failures))

    @classmethod
    def from_model_error(cls, error: Exception) -> RetryFeedback:
        """Feedback for an attempt whose model call raised."""
        return cls(recovery_action=PARSE_RECOVERY_ACTION, issues=[f"Model call failed: {error}"])

    @classmethod
    def from_parse_error(cls, error: PlanParseError) -> RetryFeedback:
        """Feedback for output that could not be parsed into a plan."""
        corrections: dict[str, str] = {}
        for provided in sorted(error.provided_fields):
            correction = find_field_correction(provided)
            if correction:
                corrections[provided] = f"rename to '{correction}'"
        return cls(
            recovery_action=PARSE_RECOVERY_ACTION,
            issues=list(error.issues),
            field_corrections=corrections,
        )

    def render(self, source_text: str) -> str:
        """Compose the retry request: the source text followed by this feedback."""
        lines = [source_text, "", "PREVIOUS ATTEMPT FAILED QUALITY CHECK. Issues found:"]
        lines.extend(f"{i}. {issue}" for i, issue in enumerate(self.issues, start=1))
        if self.field_corrections:
            lines.append("")
            lines.append("Field name corrections:")
            lines.extend(f"- '{name}': {fix}" for name, fix in self.field_corrections.items())
        lines.append("")
        lines.append(self.recovery_action)
        return "\n".join(lines)
