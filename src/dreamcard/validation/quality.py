"""Quality gate for three-panel plans.

Checks a parsed :class:`~dreamcard.models.plan.ThreePanelPlan` against the
abstract-art rules a plan must satisfy before any image is rendered. The
check is pure and deterministic: the same plan, style and rules always give
the same report, in the same order.

Failures block the plan and are fed back to the model on retry. Warnings are
logged only.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

from dreamcard.models.plan import DISTANCE_ORDER

if TYPE_CHECKING:
    from dreamcard.models.plan import ThreePanelPlan
    from dreamcard.styles.profiles import StyleProfile

DEFAULT_FORBIDDEN_WORDS: tuple[str, ...] = (
    "room",
    "corridor",
    "hallway",
    "building",
    "person",
    "face",
    "body",
    "man",
    "woman",
    "tiger",
    "train",
    "staircase",
)

# Energy arc keywords per panel position: calm entry, conflict, dissolution.
DEFAULT_PHASE_KEYWORDS: tuple[tuple[str, ...], ...] = (
    ("calm", "quiet", "establish", "entry", "distant", "vast", "negative space", "70%", "75%"),
    (
        "chaos",
        "conflict",
        "impossible",
        "twisted",
        "clash",
        "turbulence",
        "tension",
        "distortion",
    ),
    (
        "dissolv",
        "disperse",
        "fade",
        "void",
        "80%",
        "85%",
        "negative space",
        "particle",
        "mist",
        "release",
    ),
)

_PHASE_NAMES = (
    "CALM/STATIC energy (entry phase)",
    "CHAOS/CONFLICT energy (distortion phase)",
    "DISSOLUTION/VOID energy (echo phase)",
)


@dataclass(frozen=True)
class QualityRules:
    """Thresholds and word lists used by :func:`validate`.

    Defaults reproduce the production gate; every field can be overridden
    from the ``quality`` section of the configuration file.
    """

    min_abstraction: float = 0.70
    panel_count: int = 3
    max_concrete_ratio: float = 0.30
    warn_concrete_ratio: float = 0.15
    min_palette_length: int = 15
    min_scene_length: int = 80
    min_caption_length: int = 10
    max_caption_length: int = 50
    forbidden_words: tuple[str, ...] = DEFAULT_FORBIDDEN_WORDS
    phase_keywords: tuple[tuple[str, ...], ...] = DEFAULT_PHASE_KEYWORDS
    check_artist_reference: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QualityRules:
        """Create rules from a config mapping, ignoring unknown keys.

        Args:
            data: Partial mapping of field name to value.

        Returns:
            Default rules with the given fields replaced.
        """
        known = {f.name for f in fields(cls)}
        overrides: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            if key == "forbidden_words":
                value = tuple(str(w).lower() for w in value)
            elif key == "phase_keywords":
                value = tuple(tuple(str(k).lower() for k in group) for group in value)
            overrides[key] = value
        return replace(cls(), **overrides)


DEFAULT_RULES = QualityRules()


@dataclass(frozen=True)
class QualityReport:
    """Outcome of a quality check."""

    failures: tuple[str, ...] = field(default_factory=tuple)
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def passed(self) -> bool:
        return not self.failures


def _forbidden_hits(scene: str, words: tuple[str, ...]) -> list[str]:
    """Denylisted words present in *scene* as whole words (plurals included)."""
    lowered = scene.lower()
    return [
        word
        for word in words
        if re.search(rf"\b{re.escape(word)}(?:s|es)?\b", lowered) is not None
    ]


def validate(
    plan: ThreePanelPlan,
    style: StyleProfile | None = None,
    rules: QualityRules = DEFAULT_RULES,
) -> QualityReport:
    """Check a plan against the quality rules.

    Args:
        plan: Parsed plan to check.
        style: Style the plan was generated for. Enables the artist-reference
            warning; ``None`` skips it.
        rules: Thresholds and word lists.

    Returns:
        QualityReport; ``passed`` is true iff there are no failures.
    """
    failures: list[str] = []
    warnings: list[str] = []

    if plan.abstraction_level < rules.min_abstraction:
        failures.append(
            f"Abstraction level too low: {plan.abstraction_level:.2f} "
            f"(need >= {rules.min_abstraction:.2f})"
        )

    if len(plan.panels) != rules.panel_count:
        failures.append(f"Must have exactly {rules.panel_count} panels, got {len(plan.panels)}")

    for i, panel in enumerate(plan.panels, start=1):
        ratio = panel.concrete_ratio
        if ratio is None:
            continue
        if ratio > rules.max_concrete_ratio:
            failures.append(
                f"Panel {i} concrete ratio too high: {ratio:.0%} "
                f"(need <= {rules.max_concrete_ratio:.0%})"
            )
        if ratio > rules.warn_concrete_ratio:
            warnings.append(
                f"Panel {i} concrete ratio suboptimal: {ratio:.0%} "
                f"(target <= {rules.warn_concrete_ratio:.0%})"
            )

    if plan.distances != list(DISTANCE_ORDER):
        got = " -> ".join(d or "missing" for d in plan.distances) or "no panels"
        failures.append(f"Shot progression must be wide -> medium -> close, got: {got}")

    if len(plan.global_palette.strip()) < rules.min_palette_length:
        failures.append("Global palette description missing or too short")

    if style is not None and rules.check_artist_reference:
        keywords = style.artist_keywords
        scenes = [panel.scene.lower() for panel in plan.panels]
        if keywords and not any(k in scene for k in keywords for scene in scenes):
            warnings.append(f"Panels should reference {style.artist_reference} for consistency")

    for i, panel in enumerate(plan.panels, start=1):
        if not panel.compose:
            failures.append(f"Panel {i} missing 'compose' field")
        if not panel.distance:
            failures.append(f"Panel {i} missing 'distance' field")
        if len(panel.scene) < rules.min_scene_length:
            failures.append(
                f"Panel {i} scene too short ({len(panel.scene)} chars, "
                f"need {rules.min_scene_length}+)"
            )
        if not rules.min_caption_length <= len(panel.caption) <= rules.max_caption_length:
            failures.append(
                f"Panel {i} caption must be {rules.min_caption_length}-"
                f"{rules.max_caption_length} characters, got {len(panel.caption)}"
            )
        hits = _forbidden_hits(panel.scene, rules.forbidden_words)
        if hits:
            failures.append(
                f"Panel {i} contains forbidden literal subjects: {', '.join(hits)} "
                "(use abstract language)"
            )

    for index, keywords in enumerate(rules.phase_keywords):
        scene = plan.panels[index].scene.lower() if index < len(plan.panels) else ""
        if not any(k in scene for k in keywords):
            name = _PHASE_NAMES[index] if index < len(_PHASE_NAMES) else "its phase"
            warnings.append(f"Panel {index + 1} should express {name}")

    return QualityReport(failures=tuple(failures), warnings=tuple(warnings))
