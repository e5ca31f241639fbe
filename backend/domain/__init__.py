"""Domain layer definitions."""

from .tasks import (
    STARTING_STATES,
    Container,
    Controller,
    MetricPoint,
    MetricSeries,
    ProjectStatus,
    RemoteLifecycle,
    RemoteTask,
    TaskStatus,
    TaskUtilization,
    WorkItem,
)

__all__ = [
    "STARTING_STATES",
    "Container",
    "Controller",
    "MetricPoint",
    "MetricSeries",
    "ProjectStatus",
    "RemoteLifecycle",
    "RemoteTask",
    "TaskStatus",
    "TaskUtilization",
    "WorkItem",
]
