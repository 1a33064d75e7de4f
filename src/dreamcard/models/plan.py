"""Pydantic models for the three-panel plan produced by the interpreter.

These models are the strict schema stage of plan parsing: they check field
types and enumerations only. Counts, lengths, thresholds and ordering are
business rules owned by :mod:`dreamcard.validation.quality`, so that they
surface as itemized failures the model can be told to fix.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Compose = Literal["center", "thirds", "diagonal", "symmetry"]
Distance = Literal["wide", "medium", "close"]

# Shot progression every plan must follow, panel by panel.
DISTANCE_ORDER: tuple[Distance, Distance, Distance] = ("wide", "medium", "close")


class PanelPlan(BaseModel):
    """Plan for a single panel."""

    model_config = ConfigDict(extra="ignore")

    scene: str = Field(description="Abstract scene description fed to the image model")
    caption: str = Field(description="Short poetic caption shown under the panel")
    compose: Compose | None = Field(
        default=None, description="Composition hook: center | thirds | diagonal | symmetry"
    )
    distance: Distance | None = Field(
        default=None, description="Shot distance: wide | medium | close"
    )
    concrete_ratio: float | None = Field(
        default=None, description="Estimated share of concrete nouns (0.0-1.0)", ge=0.0, le=1.0
    )

    @field_validator("compose", "distance", mode="before")
    @classmethod
    def _normalize_enum(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value


class ThreePanelPlan(BaseModel):
    """Structured interpretation of a dream: global palette plus per-panel plans."""

    model_config = ConfigDict(extra="ignore")

    abstraction_level: float = Field(
        description="How abstract the interpretation is (0.0-1.0)", ge=0.0, le=1.0
    )
    global_palette: str = Field(description="Palette shared by all panels")
    panels: list[PanelPlan] = Field(description="Panel plans in display order")

    @property
    def distances(self) -> list[str | None]:
        """Shot distances in panel order."""
        return [panel.distance for panel in self.panels]
