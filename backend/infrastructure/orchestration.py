"""Contracts for the orchestration, metrics and log platforms.

The API talks to AWS in production (see :mod:`backend.infrastructure.aws`).
The in-memory implementations below simulate a cluster so the dashboard can
run locally and tests can drive task lifecycles deterministically.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, Sequence

from backend.core.errors import NotFoundError, PlatformError
from backend.core.lifecycle import USER_STOP_REASON
from backend.domain import Container, MetricSeries, RemoteLifecycle, RemoteTask, TaskUtilization


class OrchestrationPlatform(Protocol):
    """Contract for the container-orchestration service."""

    async def ensure_template(self) -> str: ...

    async def launch(self, template_handle: str, payload: Sequence[int]) -> RemoteTask: ...

    async def stop(self, task_handle: str, reason: str = USER_STOP_REASON) -> None: ...

    async def describe(self, task_handles: Sequence[str]) -> list[RemoteTask]: ...

    async def list_handles(self, desired_status: str) -> list[str]: ...

    async def relaunch(self, task_handle: str) -> RemoteTask: ...


class MetricsPlatform(Protocol):
    async def query_utilization(
        self,
        task_handles: Sequence[str],
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> dict[str, TaskUtilization]: ...


class LogPlatform(Protocol):
    async def fetch_logs(
        self,
        task_handle: str,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[str]: ...


@dataclass
class SimulatedTask:
    task: RemoteTask
    payload: list[int]
    logs: list[str] = field(default_factory=list)


class InMemoryOrchestrationPlatform:
    """Single-process stand-in for a cluster; tasks change state only when told to."""

    def __init__(self, template_handle: str = "local-task-definition:1") -> None:
        self._template_handle = template_handle
        self._tasks: dict[str, SimulatedTask] = {}
        self._counter = itertools.count(1)
        self.launch_calls = 0
        self.template_calls = 0
        self.fail_launch_on: set[int] = set()

    # ------------------------------------------------------------------
    # simulation controls
    # ------------------------------------------------------------------
    def set_status(self, task_handle: str, status: str, *, reason: str | None = None) -> None:
        entry = self._get(task_handle)
        entry.task.lifecycle_status = status
        if status in (RemoteLifecycle.STOPPED.value, RemoteLifecycle.FAILED.value):
            entry.task.desired_status = RemoteLifecycle.STOPPED.value
            entry.task.stopped_at = datetime.now(timezone.utc)
            entry.task.stopped_reason = reason
        for container in entry.task.containers:
            container.last_status = status

    def add_logs(self, task_handle: str, *lines: str) -> None:
        self._get(task_handle).logs.extend(lines)

    def payload(self, task_handle: str) -> list[int]:
        return list(self._get(task_handle).payload)

    def logs_for(self, task_handle: str) -> list[str]:
        entry = self._tasks.get(task_handle)
        return list(entry.logs) if entry else []

    def _get(self, task_handle: str) -> SimulatedTask:
        entry = self._tasks.get(task_handle)
        if entry is None:
            raise NotFoundError(f"task {task_handle} not found")
        return entry

    # ------------------------------------------------------------------
    # platform contract
    # ------------------------------------------------------------------
    async def ensure_template(self) -> str:
        self.template_calls += 1
        return self._template_handle

    async def launch(self, template_handle: str, payload: Sequence[int]) -> RemoteTask:
        self.launch_calls += 1
        if self.launch_calls in self.fail_launch_on:
            raise PlatformError(f"simulated launch failure #{self.launch_calls}")
        number = next(self._counter)
        now = datetime.now(timezone.utc)
        task = RemoteTask(
            task_handle=f"arn:local:ecs:task/local-cluster/{number:08x}",
            template_handle=template_handle,
            lifecycle_status=RemoteLifecycle.PROVISIONING.value,
            desired_status=RemoteLifecycle.RUNNING.value,
            created_at=now,
            launch_type="FARGATE",
            containers=[Container(name="scraper", last_status=RemoteLifecycle.PROVISIONING.value)],
        )
        self._tasks[task.task_handle] = SimulatedTask(task=task, payload=list(payload))
        return task

    async def stop(self, task_handle: str, reason: str = USER_STOP_REASON) -> None:
        self.set_status(task_handle, RemoteLifecycle.STOPPED.value, reason=reason)

    async def describe(self, task_handles: Sequence[str]) -> list[RemoteTask]:
        return [self._tasks[handle].task for handle in task_handles if handle in self._tasks]

    async def list_handles(self, desired_status: str) -> list[str]:
        return [
            handle
            for handle, entry in self._tasks.items()
            if (entry.task.desired_status or "").upper() == desired_status.upper()
        ]

    async def relaunch(self, task_handle: str) -> RemoteTask:
        entry = self._get(task_handle)
        return await self.launch(entry.task.template_handle or self._template_handle, entry.payload)


class InMemoryMetricsPlatform:
    def __init__(self) -> None:
        self.samples: dict[str, TaskUtilization] = {}

    async def query_utilization(
        self,
        task_handles: Sequence[str],
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> dict[str, TaskUtilization]:
        return {handle: self.samples.get(handle, TaskUtilization(MetricSeries(), MetricSeries())) for handle in task_handles}


class InMemoryLogPlatform:
    """Serves logs recorded on an :class:`InMemoryOrchestrationPlatform`."""

    def __init__(self, orchestration: InMemoryOrchestrationPlatform) -> None:
        self._orchestration = orchestration

    async def fetch_logs(
        self,
        task_handle: str,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[str]:
        return self._orchestration.logs_for(task_handle)
