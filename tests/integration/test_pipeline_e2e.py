"""End-to-end tests: submit, work the queue, read the finished card.

The record store and the job queue share one SQLite file, as they do when
the CLI opens a runtime. Only the chat model and the image backend are
stand-ins.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from dreamcard.config import DreamCardConfig
from dreamcard.models.plan import ThreePanelPlan
from dreamcard.pipeline.interpreter import DreamInterpreter
from dreamcard.providers.image_placeholder import PlaceholderImageProvider
from dreamcard.queue.sqlite_queue import SqliteJobQueue
from dreamcard.runtime import Runtime, build_orchestrator, build_worker, open_runtime
from dreamcard.service import read_project, read_status, submit_generation
from dreamcard.storage.sqlite_store import SqliteProjectStore
from dreamcard.styles.profiles import StyleRegistry
from tests.fixtures.dream_fixtures import fake_chat_model, low_abstraction_json, plan_json
from tests.integration.conftest import requires_any_provider

if TYPE_CHECKING:
    from pathlib import Path

    from langchain_core.language_models import BaseChatModel

    from dreamcard.providers.image import GenerationParams, ImageResult

pytestmark = pytest.mark.integration

DREAM = "I kept climbing a staircase in golden fog and never reached the top."


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class FlakyImageProvider:
    """Placeholder images, except that one call returns nothing."""

    def __init__(self, empty_on_call: int) -> None:
        self._inner = PlaceholderImageProvider()
        self._empty_on_call = empty_on_call
        self.calls = 0

    async def generate(
        self,
        prompt: str,
        *,
        negative_prompt: str | None = None,
        params: GenerationParams | None = None,
    ) -> list[ImageResult]:
        self.calls += 1
        if self.calls == self._empty_on_call:
            return []
        return await self._inner.generate(prompt, negative_prompt=negative_prompt, params=params)


def _config(tmp_path: Path) -> DreamCardConfig:
    config = DreamCardConfig()
    config.providers.image = "placeholder"
    config.storage.database = tmp_path / "data" / "dreamcard.db"
    config.storage.artifacts_dir = tmp_path / "artifacts"
    return config


async def _submit(runtime: Runtime) -> tuple[str, str]:
    submission = await submit_generation(
        {"input_text": DREAM, "style": "minimal", "symbols": ["stairs"], "mood": "lonely"},
        store=runtime.store,
        queue=runtime.queue,
        styles=runtime.styles,
    )
    return submission.project_id, submission.job_id


@pytest.mark.asyncio()
async def test_submitted_dream_becomes_three_panel_card(
    tmp_path: Path, styles: StyleRegistry
) -> None:
    runtime = open_runtime(_config(tmp_path), styles)
    try:
        project_id, job_id = await _submit(runtime)
        model = fake_chat_model(plan_json())
        orchestrator = build_orchestrator(runtime, chat_model=model)

        stats = await build_worker(runtime, orchestrator).run(once=True)
        await orchestrator.close()

        assert (stats.claimed, stats.succeeded, stats.failed) == (1, 1, 0)
        report = await read_status(job_id, store=runtime.store, queue=runtime.queue)
        assert (report.status, report.progress, report.stage) == ("success", 1.0, "collaging")

        project = await read_project(project_id, store=runtime.store)
        assert project.style == "memory"
        assert [p.order for p in project.panels] == [0, 1, 2]
        assert all(p.image_url and p.image_url.startswith("file://") for p in project.panels)
        assert len(list((tmp_path / "artifacts" / project_id).glob("panel-*.png"))) == 3

        prompt = model.ainvoke.await_args.args[0][1].content
        assert DREAM in prompt
        assert "stairs" in prompt
    finally:
        runtime.close()


@pytest.mark.asyncio()
async def test_low_quality_plan_is_retried_before_rendering(
    tmp_path: Path, styles: StyleRegistry
) -> None:
    runtime = open_runtime(_config(tmp_path), styles)
    try:
        project_id, _ = await _submit(runtime)
        model = fake_chat_model(low_abstraction_json(), plan_json())
        images = PlaceholderImageProvider()
        orchestrator = build_orchestrator(runtime, chat_model=model, image_provider=images)

        stats = await build_worker(runtime, orchestrator).run(once=True)

        assert stats.succeeded == 1
        assert model.ainvoke.await_count == 2
        assert images.calls == 3
        project = await read_project(project_id, store=runtime.store)
        assert project.status == "success"
    finally:
        runtime.close()


@pytest.mark.asyncio()
async def test_failed_render_is_redelivered_after_backoff(
    tmp_path: Path, styles: StyleRegistry
) -> None:
    config = _config(tmp_path)
    clock = FakeClock()
    database = config.storage.database
    runtime = Runtime(
        config=config,
        styles=styles,
        store=SqliteProjectStore(database),
        queue=SqliteJobQueue(database, options=config.queue.job_options(), clock=clock),
    )
    try:
        project_id, job_id = await _submit(runtime)
        images = FlakyImageProvider(empty_on_call=3)
        orchestrator = build_orchestrator(
            runtime, chat_model=fake_chat_model(plan_json(), plan_json()), image_provider=images
        )

        first = await build_worker(runtime, orchestrator).run(once=True)

        assert first.failed == 1
        state = await runtime.queue.get_state(job_id)
        assert state is not None
        assert state.state == "delayed"
        assert state.failed_reason == "Panel 3 render failed: No image generated"
        # the stored record shows the failure, the queue shows a pending retry
        project = await read_project(project_id, store=runtime.store)
        assert project.status == "failed"
        assert [p.order for p in project.panels] == [0, 1]
        report = await read_status(job_id, store=runtime.store, queue=runtime.queue)
        assert report.status == "queued"

        clock.now += config.queue.backoff_delay_seconds + 1
        second = await build_worker(runtime, orchestrator).run(once=True)

        assert second.succeeded == 1
        assert images.calls == 6
        project = await read_project(project_id, store=runtime.store)
        assert (project.status, project.progress, project.error_msg) == ("success", 1.0, None)
        assert [p.order for p in project.panels] == [0, 1, 2]
        state = await runtime.queue.get_state(job_id)
        assert state is not None
        assert (state.state, state.attempts_made) == ("completed", 2)
    finally:
        runtime.close()


@pytest.mark.asyncio()
async def test_duplicate_submission_of_same_job_runs_once(
    tmp_path: Path, styles: StyleRegistry
) -> None:
    runtime = open_runtime(_config(tmp_path), styles)
    try:
        project_id, job_id = await _submit(runtime)
        job = await runtime.queue.claim()
        assert job is not None
        # a redelivered payload for the same job id is ignored by the queue
        await runtime.queue.add(job.payload, job_id=job_id)

        assert await runtime.queue.counts() == {"active": 1}
    finally:
        runtime.close()


@requires_any_provider
@pytest.mark.asyncio()
async def test_live_model_produces_parseable_plan(
    any_model: BaseChatModel, styles: StyleRegistry, dream_text: str
) -> None:
    interpreter = DreamInterpreter(any_model, styles, max_retries=2, accept_degraded=True)

    plan = await interpreter.interpret(dream_text, "surreal", symbols=["stairs"], mood="surreal")

    assert isinstance(plan, ThreePanelPlan)
    assert plan.panels
    assert 0.0 <= plan.abstraction_level <= 1.0
