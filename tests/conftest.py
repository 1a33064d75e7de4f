"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from dreamcard.models.project import JobPayload, Project
from dreamcard.queue.base import QueuedJob
from dreamcard.storage.sqlite_store import SqliteProjectStore
from dreamcard.styles.profiles import StyleRegistry


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer settings in the environment from leaking into tests."""
    for name in (
        "DREAMCARD_CONFIG",
        "DREAMCARD_LLM_PROVIDER",
        "DREAMCARD_IMAGE_PROVIDER",
        "DREAMCARD_DATABASE",
        "DREAMCARD_RENDER_MODE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def styles() -> StyleRegistry:
    return StyleRegistry.load()


@pytest.fixture
def store() -> SqliteProjectStore:
    return SqliteProjectStore()


@pytest.fixture
def payload() -> JobPayload:
    return JobPayload(
        project_id="proj-1",
        input_text="I was climbing stairs that never ended, lit by a golden fog.",
        style="memory",
        symbols=["stairs"],
        mood="lonely",
    )


@pytest.fixture
def queued_job(payload: JobPayload) -> QueuedJob:
    return QueuedJob(id="job-1", payload=payload)


@pytest.fixture
def seeded_store(store: SqliteProjectStore, payload: JobPayload) -> SqliteProjectStore:
    """Store holding the ``proj-1`` project and its ``job-1`` job."""
    project = Project(
        id=payload.project_id,
        input_text=payload.input_text,
        style=payload.style,
        symbols=payload.symbols,
        mood=payload.mood,
    )
    asyncio.run(store.create_submission(project, "job-1"))
    return store
