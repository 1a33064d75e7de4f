"""Tests for SqliteProjectStore.

All tests use :memory: databases except the file round trip.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from dreamcard.errors import StorageError
from dreamcard.models.project import Panel, Project
from dreamcard.storage.base import ProjectStore
from dreamcard.storage.sqlite_store import SqliteProjectStore

if TYPE_CHECKING:
    from pathlib import Path


def _project(project_id: str = "proj-1", **fields: object) -> Project:
    data: dict[str, object] = {
        "id": project_id,
        "input_text": "Falling through a sea of clocks at dusk.",
        "style": "surreal",
        "symbols": ["clock"],
        "mood": "mysterious",
    }
    data.update(fields)
    return Project.model_validate(data)


def _panel(order: int, image_url: str = "file:///a.png", **fields: object) -> Panel:
    data: dict[str, object] = {
        "id": f"panel-{order}",
        "project_id": "proj-1",
        "order": order,
        "scene": f"scene {order}",
        "caption": f"caption {order}",
        "image_url": image_url,
    }
    data.update(fields)
    return Panel.model_validate(data)


def test_satisfies_protocol() -> None:
    assert isinstance(SqliteProjectStore(), ProjectStore)


class TestSubmissions:
    @pytest.mark.asyncio()
    async def test_create_and_read_back(self) -> None:
        store = SqliteProjectStore()

        job = await store.create_submission(_project(share_slug="abc123"), "job-1")

        assert job.id == "job-1"
        assert job.status == "queued"
        project = await store.get_project("proj-1")
        assert project is not None
        assert project.symbols == ["clock"]
        assert project.mood == "mysterious"
        assert project.share_slug == "abc123"
        assert project.status == "queued"
        assert project.progress == 0.0
        assert project.panels == []

    @pytest.mark.asyncio()
    async def test_job_lookups(self) -> None:
        store = SqliteProjectStore()
        await store.create_submission(_project(), "job-1")

        by_id = await store.get_job("job-1")
        by_project = await store.get_job_by_project("proj-1")
        project = await store.get_project_by_job("job-1")

        assert by_id == by_project
        assert project is not None
        assert project.id == "proj-1"

    @pytest.mark.asyncio()
    async def test_missing_records(self) -> None:
        store = SqliteProjectStore()

        assert await store.get_project("nope") is None
        assert await store.get_job("nope") is None
        assert await store.get_job_by_project("nope") is None
        assert await store.get_project_by_job("nope") is None

    @pytest.mark.asyncio()
    async def test_duplicate_job_id_rolls_back(self) -> None:
        store = SqliteProjectStore()
        await store.create_submission(_project(), "job-1")

        with pytest.raises(StorageError, match="already exists"):
            await store.create_submission(_project("proj-2"), "job-1")

        assert await store.get_project("proj-2") is None

    @pytest.mark.asyncio()
    async def test_list_projects_newest_first(self) -> None:
        store = SqliteProjectStore()
        await store.create_submission(_project("proj-1"), "job-1")
        await store.create_submission(_project("proj-2"), "job-2")

        projects = await store.list_projects(limit=1)

        assert [p.id for p in projects] == ["proj-2"]


class TestStateTransitions:
    @pytest.mark.asyncio()
    async def test_project_and_job_move_together(self, seeded_store: SqliteProjectStore) -> None:
        await seeded_store.mark_running("proj-1", "job-1")
        await seeded_store.update_progress("proj-1", "job-1", 0.35)

        project = await seeded_store.get_project("proj-1")
        job = await seeded_store.get_job("job-1")
        assert project is not None
        assert job is not None
        assert (project.status, project.progress) == ("running", 0.35)
        assert (job.status, job.progress) == ("running", 0.35)

    @pytest.mark.asyncio()
    async def test_failure_keeps_progress(self, seeded_store: SqliteProjectStore) -> None:
        await seeded_store.mark_running("proj-1", "job-1")
        await seeded_store.update_progress("proj-1", "job-1", 0.57)
        await seeded_store.mark_failed("proj-1", "job-1", "Panel 3 render failed")

        project = await seeded_store.get_project("proj-1")
        job = await seeded_store.get_job("job-1")
        assert project is not None
        assert job is not None
        assert project.status == "failed"
        assert project.progress == 0.57
        assert project.error_msg == job.error_msg == "Panel 3 render failed"

    @pytest.mark.asyncio()
    async def test_rerun_clears_error_and_resets_progress(
        self, seeded_store: SqliteProjectStore
    ) -> None:
        await seeded_store.mark_failed("proj-1", "job-1", "boom")
        await seeded_store.mark_running("proj-1", "job-1")

        project = await seeded_store.get_project("proj-1")
        assert project is not None
        assert project.status == "running"
        assert project.progress == 0.0
        assert project.error_msg is None

    @pytest.mark.asyncio()
    async def test_success(self, seeded_store: SqliteProjectStore) -> None:
        await seeded_store.mark_success("proj-1", "job-1")

        project = await seeded_store.get_project("proj-1")
        assert project is not None
        assert project.status == "success"
        assert project.progress == 1.0
        assert project.is_terminal

    @pytest.mark.asyncio()
    async def test_unknown_project_raises(self) -> None:
        store = SqliteProjectStore()

        with pytest.raises(StorageError, match="project not found"):
            await store.mark_running("ghost", "job-x")


class TestPanels:
    @pytest.mark.asyncio()
    async def test_panels_ordered_on_project(self, seeded_store: SqliteProjectStore) -> None:
        for order in (2, 0, 1):
            await seeded_store.add_panel(_panel(order))

        project = await seeded_store.get_project("proj-1")

        assert project is not None
        assert [p.order for p in project.panels] == [0, 1, 2]
        assert [p.position for p in project.panels] == [1, 2, 3]

    @pytest.mark.asyncio()
    async def test_same_order_replaces_row(self, seeded_store: SqliteProjectStore) -> None:
        await seeded_store.add_panel(_panel(0, "file:///first.png"))
        await seeded_store.add_panel(_panel(0, "file:///second.png", id="panel-0b"))

        panels = await seeded_store.list_panels("proj-1")

        assert len(panels) == 1
        assert panels[0].id == "panel-0b"
        assert panels[0].image_url == "file:///second.png"

    @pytest.mark.asyncio()
    async def test_update_panel_image(self, seeded_store: SqliteProjectStore) -> None:
        sketch = "file:///sketch.png"
        await seeded_store.add_panel(_panel(1, sketch, sketch_url=sketch))

        await seeded_store.update_panel_image("proj-1", 1, "file:///final.png")

        (panel,) = await seeded_store.list_panels("proj-1")
        assert panel.image_url == "file:///final.png"
        assert panel.sketch_url == "file:///sketch.png"

    @pytest.mark.asyncio()
    async def test_update_missing_panel_raises(self, seeded_store: SqliteProjectStore) -> None:
        with pytest.raises(StorageError, match="panel not found"):
            await seeded_store.update_panel_image("proj-1", 2, "file:///x.png")


@pytest.mark.asyncio()
async def test_file_database_persists(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "dreamcard.db"
    store = SqliteProjectStore(db_path)
    await store.create_submission(_project(), "job-1")
    store.close()

    reopened = SqliteProjectStore(db_path)
    try:
        assert await reopened.get_project("proj-1") is not None
    finally:
        reopened.close()
