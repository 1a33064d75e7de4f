"""Plan payloads and fake collaborators shared by unit and integration tests."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from langchain_core.messages import AIMessage

GOOD_SCENES = (
    "Vincent van Gogh masterpiece: SENSATION - WIDE SHOT of a calm distant mist blue "
    "color field, golden threads suspended in vast negative space with tender impasto.",
    "Vincent van Gogh masterpiece: DISTORTION - MID SHOT where the golden threads twist "
    "into impossible loops, ochre clashing with mist blue in turbulent tension.",
    "Vincent van Gogh masterpiece: ECHO - CLOSE-UP of golden threads dissolving into "
    "particles, amber warmth fading into a blue void that swallows the light.",
)

GOOD_CAPTIONS = (
    "Golden threads in mist",
    "Lines that refuse to rest",
    "Memory becomes mist",
)


def make_plan_dict(**overrides: Any) -> dict[str, Any]:
    """A plan that passes every quality rule for the ``memory`` style."""
    plan: dict[str, Any] = {
        "abstraction_level": 0.85,
        "global_palette": "mist blue, golden fog and ochre red with amber warmth",
        "panels": [
            {
                "scene": GOOD_SCENES[0],
                "caption": GOOD_CAPTIONS[0],
                "compose": "symmetry",
                "distance": "wide",
                "concrete_ratio": 0.08,
            },
            {
                "scene": GOOD_SCENES[1],
                "caption": GOOD_CAPTIONS[1],
                "compose": "diagonal",
                "distance": "medium",
                "concrete_ratio": 0.12,
            },
            {
                "scene": GOOD_SCENES[2],
                "caption": GOOD_CAPTIONS[2],
                "compose": "center",
                "distance": "close",
                "concrete_ratio": 0.04,
            },
        ],
    }
    plan.update(overrides)
    return plan


def plan_json(**overrides: Any) -> str:
    return json.dumps(make_plan_dict(**overrides))


def low_abstraction_json() -> str:
    """A well-formed plan that fails the abstraction threshold."""
    return plan_json(abstraction_level=0.5)


def fake_chat_model(*contents: str | BaseException) -> MagicMock:
    """Chat model whose ``ainvoke`` returns (or raises) each item in turn."""
    model = MagicMock()
    model.ainvoke = AsyncMock(
        side_effect=[
            c if isinstance(c, BaseException) else AIMessage(content=c) for c in contents
        ]
    )
    return model
