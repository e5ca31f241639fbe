"""Domain entities for scraping tasks and the reference dataset."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    """Canonical, user-facing status of a project task."""

    RUNNING = "Running"
    STOPPED = "Stopped"
    SUCCESSFUL = "Successful"
    FAILED = "Failed"


class Controller(str, Enum):
    """Who caused the last status change of a task."""

    AUTO = "auto"
    MANUAL = "manual"


class ProjectStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RemoteLifecycle(str, Enum):
    """Lifecycle states reported by the orchestration platform."""

    PROVISIONING = "PROVISIONING"
    PENDING = "PENDING"
    ACTIVATING = "ACTIVATING"
    RUNNING = "RUNNING"
    DEACTIVATING = "DEACTIVATING"
    STOPPING = "STOPPING"
    DEPROVISIONING = "DEPROVISIONING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"

    @classmethod
    def parse(cls, value: str | None) -> "RemoteLifecycle | None":
        if not value:
            return None
        try:
            return cls(value.upper())
        except ValueError:
            return None


STARTING_STATES = frozenset(
    {RemoteLifecycle.PROVISIONING, RemoteLifecycle.PENDING, RemoteLifecycle.ACTIVATING}
)


@dataclass(slots=True, frozen=True)
class WorkItem:
    """One row of the reference dataset."""

    identifier: int
    state: str
    city: str
    category: str


@dataclass(slots=True)
class Container:
    name: str
    last_status: str | None = None
    image: str | None = None
    cpu: int | None = None
    memory: int | None = None


@dataclass(slots=True)
class RemoteTask:
    """Cached copy of a task as last reported by the orchestration platform."""

    task_handle: str
    template_handle: str | None = None
    lifecycle_status: str | None = None
    desired_status: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    stopped_reason: str | None = None
    launch_type: str | None = None
    group: str | None = None
    containers: list[Container] = field(default_factory=list)

    @property
    def task_id(self) -> str:
        return self.task_handle.rsplit("/", 1)[-1]

    @property
    def lifecycle(self) -> RemoteLifecycle | None:
        return RemoteLifecycle.parse(self.lifecycle_status)


@dataclass(slots=True)
class MetricPoint:
    value: float
    timestamp: datetime


@dataclass(slots=True)
class MetricSeries:
    current: float = 0.0
    history: list[MetricPoint] = field(default_factory=list)


@dataclass(slots=True)
class TaskUtilization:
    cpu: MetricSeries = field(default_factory=MetricSeries)
    memory: MetricSeries = field(default_factory=MetricSeries)
