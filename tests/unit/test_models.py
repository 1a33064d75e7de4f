"""Tests for request, project and plan models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from dreamcard.models.plan import PanelPlan, ThreePanelPlan
from dreamcard.models.project import (
    GenerationRequest,
    InputLimits,
    Panel,
    Project,
)

STYLE_MAP = {"memory": "memory", "minimal": "memory", "lucid": "lucid"}


def _validate(**data: object) -> GenerationRequest:
    fields: dict[str, object] = {"input_text": "A dream of endless stairs", "style": "memory"}
    fields.update(data)
    return GenerationRequest.model_validate(fields, context={"styles": STYLE_MAP})


class TestGenerationRequest:
    def test_defaults(self) -> None:
        request = _validate()

        assert request.visibility == "private"
        assert request.symbols == []
        assert request.mood is None

    @pytest.mark.parametrize("length", [10, 1000])
    def test_length_bounds_inclusive(self, length: int) -> None:
        assert len(_validate(input_text="x" * length).input_text) == length

    @pytest.mark.parametrize(
        ("length", "message"),
        [(9, "at least 10 characters"), (1001, "at most 1000 characters")],
    )
    def test_length_out_of_bounds(self, length: int, message: str) -> None:
        with pytest.raises(ValidationError, match=message):
            _validate(input_text="x" * length)

    def test_custom_limits(self) -> None:
        limits = InputLimits(min_length=3, max_length=5)

        request = GenerationRequest.model_validate(
            {"input_text": "abc", "style": "memory"}, context={"limits": limits}
        )

        assert request.input_text == "abc"

    def test_alias_resolves_to_canonical_style(self) -> None:
        assert _validate(style=" Minimal ").style == "memory"

    def test_unknown_style_lists_allowed(self) -> None:
        with pytest.raises(ValidationError, match="expected one of: lucid, memory"):
            _validate(style="noir")

    def test_style_unchecked_without_registry(self) -> None:
        request = GenerationRequest.model_validate(
            {"input_text": "A dream of endless stairs", "style": "anything"}
        )

        assert request.style == "anything"

    def test_symbols_are_cleaned(self) -> None:
        assert _validate(symbols=[" Door ", "", "  ", "FOG"]).symbols == ["door", "fog"]

    def test_visibility_is_checked(self) -> None:
        with pytest.raises(ValidationError):
            _validate(visibility="friends")


class TestRecords:
    def test_panel_position_is_one_based(self) -> None:
        panel = Panel(id="p", project_id="x", order=2, scene="s", caption="c")

        assert panel.position == 3

    def test_panel_order_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Panel(id="p", project_id="x", order=3, scene="s", caption="c")

    def test_project_terminal_states(self) -> None:
        project = Project(id="p", input_text="x" * 10, style="memory")

        assert not project.is_terminal
        assert project.model_copy(update={"status": "failed"}).is_terminal
        assert project.model_copy(update={"status": "success"}).is_terminal

    def test_progress_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Project(id="p", input_text="x" * 10, style="memory", progress=1.5)


class TestPlanModels:
    def test_enum_values_are_normalized(self) -> None:
        panel = PanelPlan(scene="s", caption="c", compose=" Diagonal ", distance="WIDE")

        assert panel.compose == "diagonal"
        assert panel.distance == "wide"

    def test_distances_follow_panel_order(self) -> None:
        plan = ThreePanelPlan(
            abstraction_level=0.8,
            global_palette="mist blue and amber",
            panels=[
                PanelPlan(scene="a", caption="a", distance="wide"),
                PanelPlan(scene="b", caption="b"),
                PanelPlan(scene="c", caption="c", distance="close"),
            ],
        )

        assert plan.distances == ["wide", None, "close"]

    def test_abstraction_must_be_a_fraction(self) -> None:
        with pytest.raises(ValidationError):
            ThreePanelPlan(abstraction_level=1.4, global_palette="p", panels=[])
