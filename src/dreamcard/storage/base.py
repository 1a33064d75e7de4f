"""Storage protocol the pipeline writes project state through."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dreamcard.models.project import Job, Panel, Project


@runtime_checkable
class ProjectStore(Protocol):
    """Persistence for projects, their jobs and panels.

    Status and progress are written to the project and its job together so
    the two records never disagree.
    """

    async def create_submission(self, project: Project, job_id: str) -> Job: ...

    async def get_project(self, project_id: str) -> Project | None: ...

    async def get_job(self, job_id: str) -> Job | None: ...

    async def get_job_by_project(self, project_id: str) -> Job | None: ...

    async def get_project_by_job(self, job_id: str) -> Project | None: ...

    async def list_panels(self, project_id: str) -> list[Panel]: ...

    async def mark_running(self, project_id: str, job_id: str) -> None: ...

    async def update_progress(self, project_id: str, job_id: str, progress: float) -> None: ...

    async def mark_success(self, project_id: str, job_id: str) -> None: ...

    async def mark_failed(self, project_id: str, job_id: str, error_msg: str) -> None: ...

    async def add_panel(self, panel: Panel) -> Panel: ...

    async def update_panel_image(self, project_id: str, order: int, image_url: str) -> None: ...
