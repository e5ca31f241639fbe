from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator

from backend.domain import Controller, ProjectStatus, TaskStatus

ALL = "All"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CityFilter(BaseModel):
    city: str = Field(min_length=1)
    business_types: list[str] = Field(default_factory=list)

    @field_validator("city")
    @classmethod
    def _strip_city(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("city must not be blank")
        return value

    @field_validator("business_types")
    @classmethod
    def _all_is_exclusive(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if ALL in cleaned and len(cleaned) > 1:
            raise ValueError('"All" cannot be combined with other business types')
        return cleaned

    @property
    def all_cities(self) -> bool:
        return self.city == ALL

    @property
    def categories(self) -> frozenset[str] | None:
        """Category constraint, or ``None`` when every category matches."""

        if not self.business_types or ALL in self.business_types:
            return None
        return frozenset(self.business_types)


class StateFilter(BaseModel):
    state: str = Field(min_length=1)
    city_filters: list[CityFilter] = Field(default_factory=list)

    @field_validator("state")
    @classmethod
    def _strip_state(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("state must not be blank")
        return value


class EntireDataset(BaseModel):
    mode: Literal["entire"] = "entire"


class ByState(BaseModel):
    mode: Literal["by_state"] = "by_state"
    states: list[StateFilter] = Field(min_length=1)


FilterSpec = Annotated[Union[EntireDataset, ByState], Field(discriminator="mode")]


class ProjectTaskRecord(BaseModel):
    task_handle: str
    last_status: TaskStatus = TaskStatus.RUNNING
    controller: Controller = Controller.AUTO
    started_at: datetime | None = None


class ProjectSettings(BaseModel):
    task_count: int = Field(default=1, ge=0)
    start_date: date | None = None
    entire_scraping: bool = False
    high_priority: bool = False
    custom_query: str = ""


class Project(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    status: ProjectStatus = ProjectStatus.PENDING
    settings: ProjectSettings = Field(default_factory=ProjectSettings)
    filters: FilterSpec = Field(default_factory=EntireDataset)
    query_count: int = 0
    query_ids: list[int] = Field(default_factory=list)
    scraping_tasks: list[ProjectTaskRecord] = Field(default_factory=list)
    last_run: datetime | None = None
    success_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def find_task(self, task_handle: str) -> ProjectTaskRecord | None:
        for record in self.scraping_tasks:
            if record.task_handle == task_handle:
                return record
        return None


# ----------------------------------------------------------------------
# request bodies
# ----------------------------------------------------------------------
class LaunchRequest(BaseModel):
    task_count: int = Field(gt=0)
    ids: list[int]
    start_date: date


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    settings: ProjectSettings = Field(default_factory=ProjectSettings)
    filters: FilterSpec = Field(default_factory=EntireDataset)
    query_count: int | None = Field(default=None, ge=0)
    query_ids: list[int] = Field(default_factory=list)
    scraping_tasks: list[ProjectTaskRecord] = Field(default_factory=list)


class LaunchProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    filters: FilterSpec
    task_count: int = Field(gt=0)
    start_date: date
    high_priority: bool = False
    custom_query: str = ""


class UpdateProjectRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    settings: ProjectSettings | None = None
    filters: FilterSpec | None = None


class RecordRunRequest(BaseModel):
    """Outcome of a finished run; ``success`` is ``None`` when only the time is recorded."""

    success: bool | None = None
