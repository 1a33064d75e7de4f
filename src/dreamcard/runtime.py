"""Wiring: build stores, providers, the orchestrator and the worker from config."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from dreamcard.observability.logging import get_logger
from dreamcard.pipeline.interpreter import DreamInterpreter
from dreamcard.pipeline.orchestrator import PipelineOrchestrator
from dreamcard.pipeline.renderer import PanelRenderer
from dreamcard.pipeline.worker import Worker
from dreamcard.providers.factory import create_chat_model_from_spec
from dreamcard.providers.image_factory import create_image_provider
from dreamcard.queue.limiter import RateLimiter
from dreamcard.queue.sqlite_queue import SqliteJobQueue
from dreamcard.storage.artifacts import LocalArtifactStore, SupabaseArtifactStore
from dreamcard.storage.sqlite_store import SqliteProjectStore
from dreamcard.styles.profiles import StyleRegistry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from langchain_core.language_models import BaseChatModel

    from dreamcard.config import DreamCardConfig, StorageConfig
    from dreamcard.providers.image import ImageProvider
    from dreamcard.storage.artifacts import ArtifactStore

log = get_logger(__name__)


@dataclass
class Runtime:
    """Long-lived resources shared by the service and the worker."""

    config: DreamCardConfig
    styles: StyleRegistry
    store: SqliteProjectStore
    queue: SqliteJobQueue

    def close(self) -> None:
        self.queue.close()
        self.store.close()


def open_runtime(config: DreamCardConfig, styles: StyleRegistry | None = None) -> Runtime:
    """Open the record store and job queue named by *config*."""
    database = config.storage.database
    return Runtime(
        config=config,
        styles=styles or StyleRegistry.load(),
        store=SqliteProjectStore(database),
        queue=SqliteJobQueue(database, options=config.queue.job_options()),
    )


def build_artifact_store(storage: StorageConfig) -> ArtifactStore:
    if storage.backend == "supabase":
        return SupabaseArtifactStore(bucket=storage.bucket)
    return LocalArtifactStore(storage.artifacts_dir, storage.public_base_url)


def _close_later(resource: object, closers: list[Callable[[], Awaitable[None]]]) -> None:
    """Register *resource*'s ``aclose`` when it holds an HTTP client."""
    aclose = getattr(resource, "aclose", None)
    if aclose is not None:
        closers.append(aclose)


def build_orchestrator(
    runtime: Runtime,
    *,
    chat_model: BaseChatModel | None = None,
    image_provider: ImageProvider | None = None,
    artifacts: ArtifactStore | None = None,
) -> PipelineOrchestrator:
    """Assemble the pipeline; any component can be injected instead of built."""
    config = runtime.config
    closers: list[Callable[[], Awaitable[None]]] = []
    if chat_model is None:
        chat_model = create_chat_model_from_spec(
            config.providers.llm,
            temperature=config.interpreter.temperature,
            max_tokens=config.interpreter.max_tokens,
        )
    if image_provider is None:
        image_provider = create_image_provider(config.providers.image)
        _close_later(image_provider, closers)
    if artifacts is None:
        artifacts = build_artifact_store(config.storage)
        _close_later(artifacts, closers)

    interpreter = DreamInterpreter(
        chat_model,
        runtime.styles,
        rules=config.quality,
        max_retries=config.interpreter.max_retries,
        accept_degraded=config.interpreter.accept_degraded,
    )
    renderer = PanelRenderer(
        image_provider,
        runtime.styles,
        config.render.params(),
        config.render.sketch_params(),
    )
    log.debug(
        "orchestrator_built",
        llm=config.providers.llm,
        image=config.providers.image,
        mode=config.render.mode,
    )
    return PipelineOrchestrator(
        runtime.store,
        artifacts,
        interpreter,
        renderer,
        queue=runtime.queue,
        render_mode=config.render.mode,
        closers=closers,
    )


def build_worker(
    runtime: Runtime, orchestrator: PipelineOrchestrator, *, concurrency: int | None = None
) -> Worker:
    worker_config = runtime.config.worker
    return Worker(
        runtime.queue,
        orchestrator,
        concurrency=concurrency or worker_config.concurrency,
        limiter=RateLimiter(worker_config.rate_limit_max, worker_config.rate_limit_window_seconds),
        poll_interval=worker_config.poll_interval_seconds,
    )
