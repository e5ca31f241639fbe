"""Infrastructure layer for project persistence."""
from __future__ import annotations

from typing import Any, Mapping, Protocol

from backend.core.errors import NotFoundError
from backend.core.schema import Project, utcnow


class ProjectRepository(Protocol):
    """Persistence contract for scraping projects."""

    async def create(self, project: Project) -> Project: ...

    async def get_all(self) -> list[Project]: ...

    async def get_by_id(self, project_id: str) -> Project | None: ...

    async def update(self, project_id: str, fields: Mapping[str, Any]) -> Project: ...

    async def delete(self, project_id: str) -> bool: ...


def apply_fields(project: Project, fields: Mapping[str, Any]) -> Project:
    """Return ``project`` with ``fields`` written over it and re-validated."""

    data = project.model_dump()
    data.update({key: value for key, value in fields.items() if key != "id"})
    if "updated_at" not in fields:
        data["updated_at"] = utcnow()
    return Project.model_validate(data)


class InMemoryProjectRepository:
    """Simple in-memory repository for local runs and tests."""

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}

    async def create(self, project: Project) -> Project:
        self._projects[project.id] = project.model_copy(deep=True)
        return project.model_copy(deep=True)

    async def get_all(self) -> list[Project]:
        projects = [project.model_copy(deep=True) for project in self._projects.values()]
        projects.sort(key=lambda item: item.created_at)
        return projects

    async def get_by_id(self, project_id: str) -> Project | None:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def update(self, project_id: str, fields: Mapping[str, Any]) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFoundError(f"project {project_id} not found")
        updated = apply_fields(project, fields)
        self._projects[project_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, project_id: str) -> bool:
        return self._projects.pop(project_id, None) is not None
