"""Pipeline orchestrator: runs one generation job end to end.

One execution moves a project through ``running`` to ``success`` or
``failed``: interpret the text, render the three panels sequentially, store
each image and persist each panel as soon as it exists. Any error is
recorded on the project and job exactly once and then re-raised so the queue
can decide whether to deliver the job again.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import httpx

from dreamcard.errors import InterpretationError, NotFoundError, RenderError, StorageError
from dreamcard.models.project import Panel
from dreamcard.observability.logging import get_logger
from dreamcard.pipeline.progress import (
    DONE,
    PARSING,
    RENDERING,
    SKETCHING,
    rendering_progress,
    to_queue_progress,
)
from dreamcard.storage.artifacts import artifact_key, image_bytes
from dreamcard.styles.profiles import PANEL_COUNT

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from dreamcard.models.plan import PanelPlan
    from dreamcard.pipeline.interpreter import DreamInterpreter
    from dreamcard.pipeline.renderer import PanelRenderer, RenderVariant
    from dreamcard.queue.base import JobQueue, QueuedJob
    from dreamcard.storage.artifacts import ArtifactStore
    from dreamcard.storage.base import ProjectStore

log = get_logger(__name__)

RenderMode = Literal["single", "two_stage"]


@dataclass
class JobOutcome:
    """Result of processing one job delivery."""

    job_id: str
    project_id: str
    status: Literal["success", "skipped"]
    panels: list[Panel] = field(default_factory=list)
    duration_seconds: float = 0.0


class _ProgressTracker:
    """Writes progress to the store and the queue, never moving backwards."""

    def __init__(
        self, store: ProjectStore, queue: JobQueue | None, project_id: str, job_id: str
    ) -> None:
        self._store = store
        self._queue = queue
        self._project_id = project_id
        self._job_id = job_id
        self.current = 0.0

    async def report_queue(self, progress: float) -> None:
        if self._queue is not None:
            await self._queue.update_progress(self._job_id, to_queue_progress(progress))

    async def advance(self, progress: float) -> None:
        if progress <= self.current:
            log.debug("progress_not_advanced", current=self.current, requested=progress)
            return
        self.current = progress
        await self._store.update_progress(self._project_id, self._job_id, progress)
        await self.report_queue(progress)


class PipelineOrchestrator:
    """Process queued generation jobs.

    Args:
        store: Project, job and panel records.
        artifacts: Where panel images are written.
        interpreter: Text to plan.
        renderer: Plan scene to image.
        queue: Receives 0..100 progress updates for the claimed job.
        render_mode: ``single`` renders finals only; ``two_stage`` renders
            and stores a sketch of every panel before the finals.
        http_client: Client used to download images that providers return
            as remote URLs. Created on demand when omitted.
        closers: Coroutine functions awaited by :meth:`close`, for clients
            the orchestrator was built with and now owns.
    """

    def __init__(
        self,
        store: ProjectStore,
        artifacts: ArtifactStore,
        interpreter: DreamInterpreter,
        renderer: PanelRenderer,
        *,
        queue: JobQueue | None = None,
        render_mode: RenderMode = "single",
        http_client: httpx.AsyncClient | None = None,
        closers: Sequence[Callable[[], Awaitable[None]]] = (),
    ) -> None:
        self._store = store
        self._artifacts = artifacts
        self._interpreter = interpreter
        self._renderer = renderer
        self._queue = queue
        self.render_mode = render_mode
        self._http_client = http_client
        self._owns_client = http_client is None
        self._closers = list(closers)

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        closers, self._closers = self._closers, []
        for closer in closers:
            await closer()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=60.0)
        return self._http_client

    async def process(self, job: QueuedJob) -> JobOutcome:
        """Run one delivery of *job*.

        A delivery for a project that already succeeded is acknowledged
        without doing any work.

        Raises:
            NotFoundError: If the project does not exist.
            Exception: Whatever failed the execution, after it was recorded.
        """
        payload = job.payload
        project_id = payload.project_id
        project = await self._store.get_project(project_id)
        if project is None:
            raise NotFoundError("project", project_id)
        if project.status == "success":
            log.info("job_duplicate_delivery", attempt=job.attempt)
            return JobOutcome(job_id=job.id, project_id=project_id, status="skipped")

        start = time.perf_counter()
        tracker = _ProgressTracker(self._store, self._queue, project_id, job.id)
        log.info("job_started", attempt=job.attempt, style=payload.style, mode=self.render_mode)

        try:
            await self._store.mark_running(project_id, job.id)
            await tracker.report_queue(0.0)

            plan = await self._interpreter.interpret(
                payload.input_text, payload.style, payload.symbols, payload.mood
            )
            planned = plan.panels[:PANEL_COUNT]
            if len(planned) < PANEL_COUNT:
                raise InterpretationError(
                    f"Accepted plan has {len(planned)} panel(s), need {PANEL_COUNT}",
                    self._interpreter.max_retries + 1,
                )
            await tracker.advance(PARSING)

            if self.render_mode == "two_stage":
                panels = await self._render_two_stage(project_id, payload.style, planned, tracker)
            else:
                panels = await self._render_single(project_id, payload.style, planned, tracker)

            await self._store.mark_success(project_id, job.id)
            await tracker.report_queue(DONE)
        except Exception as e:
            duration = time.perf_counter() - start
            log.error(
                "job_failed",
                error=str(e),
                error_type=type(e).__name__,
                progress=tracker.current,
                duration=f"{duration:.2f}s",
            )
            try:
                await self._store.mark_failed(project_id, job.id, str(e))
            except Exception as store_error:
                log.error("job_failure_not_recorded", error=str(store_error))
            raise

        duration = time.perf_counter() - start
        log.info("job_succeeded", panels=len(panels), duration=f"{duration:.2f}s")
        return JobOutcome(
            job_id=job.id,
            project_id=project_id,
            status="success",
            panels=panels,
            duration_seconds=duration,
        )

    async def _store_image(
        self, project_id: str, panel_index: int, scene: str, style: str, variant: RenderVariant
    ) -> str:
        """Render one image, upload it under a fresh key and return its URL."""
        image = await self._renderer.render(scene, style, panel_index, variant=variant)
        data = await image_bytes(image, self._client())
        key = artifact_key(
            project_id,
            panel_index,
            variant="sketch" if variant == "sketch" else "panel",
            content_type=image.content_type,
        )
        url = await self._artifacts.put(data, key, image.content_type)
        log.debug("artifact_stored", panel=panel_index + 1, key=key)
        return url

    async def _render_single(
        self,
        project_id: str,
        style: str,
        planned: list[PanelPlan],
        tracker: _ProgressTracker,
    ) -> list[Panel]:
        panels: list[Panel] = []
        for i, panel_plan in enumerate(planned):
            url = await self._store_image(project_id, i, panel_plan.scene, style, "final")
            panel = await self._store.add_panel(
                Panel(
                    id=str(uuid.uuid4()),
                    project_id=project_id,
                    order=i,
                    scene=panel_plan.scene,
                    caption=panel_plan.caption,
                    image_url=url,
                )
            )
            panels.append(panel)
            await tracker.advance(rendering_progress(i + 1, len(planned)))
        return panels

    async def _render_two_stage(
        self,
        project_id: str,
        style: str,
        planned: list[PanelPlan],
        tracker: _ProgressTracker,
    ) -> list[Panel]:
        panels: list[Panel] = []
        sketch_urls: list[str] = []
        total = len(planned)
        for i, panel_plan in enumerate(planned):
            sketch_url = await self._store_image(project_id, i, panel_plan.scene, style, "sketch")
            sketch_urls.append(sketch_url)
            panel = await self._store.add_panel(
                Panel(
                    id=str(uuid.uuid4()),
                    project_id=project_id,
                    order=i,
                    scene=panel_plan.scene,
                    caption=panel_plan.caption,
                    sketch_url=sketch_url,
                )
            )
            panels.append(panel)
            # Sketches fill [PARSING, SKETCHING) so the stage stays "sketching".
            await tracker.advance(
                rendering_progress(i + 1, total + 1, start=PARSING, end=SKETCHING)
            )

        # image_url stays null until the final pass, so a job failing here
        # never exposes a full set of panel images.
        await tracker.advance(SKETCHING)
        for i, panel_plan in enumerate(planned):
            try:
                url = await self._store_image(project_id, i, panel_plan.scene, style, "final")
            except (RenderError, StorageError) as e:
                log.warning("panel_final_fallback_to_sketch", panel=i + 1, error=str(e))
                url = sketch_urls[i]
            await self._store.update_panel_image(project_id, i, url)
            panels[i] = panels[i].model_copy(update={"image_url": url})
            await tracker.advance(rendering_progress(i + 1, total, start=SKETCHING, end=RENDERING))
        return panels
