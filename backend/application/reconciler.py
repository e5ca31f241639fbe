"""Reconcile remote task state into persisted project and task statuses."""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import structlog

from backend.core.errors import NotFoundError
from backend.core.lifecycle import (
    USER_STOP_REASON,
    apply_transition,
    classify_logs,
    count_outcomes,
    derive_project_status,
    infer_from_remote,
)
from backend.core.retry import ExponentialBackoff, call_with_retry
from backend.core.schema import Project, ProjectTaskRecord, utcnow
from backend.domain import (
    Container,
    Controller,
    MetricSeries,
    RemoteLifecycle,
    RemoteTask,
    TaskStatus,
    TaskUtilization,
)
from backend.infrastructure import LogPlatform, MetricsPlatform, OrchestrationPlatform, ProjectRepository

from .locks import ProjectLocks

T = TypeVar("T")

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class TaskPerformance:
    task_handle: str
    task_id: str
    status: str
    lifecycle_status: str | None = None
    project_id: str | None = None
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    cpu: MetricSeries = field(default_factory=MetricSeries)
    memory: MetricSeries = field(default_factory=MetricSeries)
    containers: list[Container] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class LogVerdict:
    """Outcome of a log check; ``fetched`` is False when the logs were unavailable."""

    fetched: bool
    status: TaskStatus | None = None


class StatusReconciler:
    """Polls the orchestration platform and advances task records.

    Sweeps only apply legal transitions (see
    :data:`backend.core.lifecycle.ALLOWED_TRANSITIONS`), so running the same
    sweep twice, or two overlapping sweeps, converges on the same records.
    """

    def __init__(
        self,
        repository: ProjectRepository,
        orchestration: OrchestrationPlatform,
        metrics: MetricsPlatform,
        logs: LogPlatform,
        locks: ProjectLocks,
        *,
        retry: ExponentialBackoff,
        success_markers: Sequence[str],
        error_markers: Sequence[str],
        stop_reason: str = USER_STOP_REASON,
    ) -> None:
        self._repository = repository
        self._orchestration = orchestration
        self._metrics = metrics
        self._logs = logs
        self._locks = locks
        self._retry = retry
        self._success_markers = tuple(success_markers)
        self._error_markers = tuple(error_markers)
        self._stop_reason = stop_reason

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _fetch(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        operation: str,
        default: T,
    ) -> T:
        try:
            return await call_with_retry(fn, *args, policy=self._retry, operation=operation)
        except Exception as exc:
            logger.warning("reconcile_fetch_failed", operation=operation, error=str(exc))
            return default

    async def _check_logs(self, task_handle: str) -> LogVerdict:
        try:
            lines = await call_with_retry(
                self._logs.fetch_logs,
                task_handle,
                policy=self._retry,
                operation="logs.fetch",
            )
        except Exception as exc:
            logger.warning("task_log_fetch_failed", task=task_handle, error=str(exc))
            return LogVerdict(fetched=False)
        return LogVerdict(fetched=True, status=classify_logs(lines, self._success_markers, self._error_markers))

    # ------------------------------------------------------------------
    # per-project reconciliation
    # ------------------------------------------------------------------
    async def reconcile_project(self, project_id: str, remote_tasks: dict[str, RemoteTask]) -> Project | None:
        """Apply inferred transitions to one project in a single write.

        Returns the project as stored afterwards, or ``None`` if it has been
        deleted in the meantime.
        """

        async with self._locks.for_project(project_id):
            try:
                project = await call_with_retry(
                    self._repository.get_by_id,
                    project_id,
                    policy=self._retry,
                    operation="projects.get_by_id",
                )
            except Exception as exc:
                logger.warning("project_read_failed", project_id=project_id, error=str(exc))
                return None
            if project is None:
                return None

            updated: list[ProjectTaskRecord] = list(project.scraping_tasks)
            pending_logs: dict[int, Awaitable[LogVerdict]] = {}

            for index, record in enumerate(project.scraping_tasks):
                remote = remote_tasks.get(record.task_handle)
                if remote is None:
                    continue
                inference = infer_from_remote(record, remote, stop_reason=self._stop_reason)
                if inference is None:
                    continue
                if inference.needs_logs:
                    if record.last_status in (TaskStatus.RUNNING, TaskStatus.STOPPED):
                        pending_logs[index] = self._check_logs(record.task_handle)
                    continue
                updated[index] = apply_transition(record, inference.status, inference.controller)

            if pending_logs:
                verdicts = await asyncio.gather(*pending_logs.values())
                for index, verdict in zip(pending_logs, verdicts):
                    if not verdict.fetched:
                        continue
                    record = updated[index]
                    updated[index] = apply_transition(record, verdict.status or TaskStatus.STOPPED, Controller.AUTO)

            changed = [
                new.task_handle for new, old in zip(updated, project.scraping_tasks) if new is not old
            ]
            status = derive_project_status(updated)
            if not changed and status == project.status:
                return project

            fields: dict[str, Any] = {"scraping_tasks": updated, "status": status}
            successes, failures = count_outcomes(project.scraping_tasks, updated)
            if successes or failures:
                fields["success_count"] = project.success_count + successes
                fields["failed_count"] = project.failed_count + failures
                fields["last_run"] = utcnow()

            try:
                project = await call_with_retry(
                    self._repository.update,
                    project_id,
                    fields,
                    policy=self._retry,
                    operation="projects.update",
                )
            except NotFoundError:
                return None
            except Exception as exc:
                logger.warning("project_write_failed", project_id=project_id, error=str(exc))
                return project

            logger.info(
                "project_reconciled",
                project_id=project_id,
                status=status.value,
                changed=changed,
            )
            return project

    # ------------------------------------------------------------------
    # sweep
    # ------------------------------------------------------------------
    async def reconcile_and_get_performance(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[TaskPerformance]:
        """Run one sweep over every project and report per-task utilization.

        Failures of individual fetches degrade to missing data; this method
        does not raise for platform errors.
        """

        with structlog.contextvars.bound_contextvars(sweep_id=uuid.uuid4().hex[:12]):
            projects = await self._fetch(self._repository.get_all, operation="projects.get_all", default=[])
            tracked = [record.task_handle for project in projects for record in project.scraping_tasks]

            running, stopped = await asyncio.gather(
                self._fetch(
                    self._orchestration.list_handles,
                    RemoteLifecycle.RUNNING.value,
                    operation="orchestration.list_running",
                    default=[],
                ),
                self._fetch(
                    self._orchestration.list_handles,
                    RemoteLifecycle.STOPPED.value,
                    operation="orchestration.list_stopped",
                    default=[],
                ),
            )
            handles = list(dict.fromkeys([*running, *stopped, *tracked]))

            remote: list[RemoteTask] = []
            if handles:
                remote = await self._fetch(
                    self._orchestration.describe,
                    handles,
                    operation="orchestration.describe",
                    default=[],
                )
            remote_by_handle = {task.task_handle: task for task in remote}

            utilization: dict[str, TaskUtilization] = {}
            if remote_by_handle:
                utilization = await self._fetch(
                    self._metrics.query_utilization,
                    list(remote_by_handle),
                    start_time,
                    end_time,
                    operation="metrics.query_utilization",
                    default={},
                )

            outcomes = await asyncio.gather(
                *(self.reconcile_project(project.id, remote_by_handle) for project in projects),
                return_exceptions=True,
            )

            local: dict[str, tuple[TaskStatus, str]] = {}
            for project, outcome in zip(projects, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("project_reconcile_crashed", project_id=project.id, error=repr(outcome))
                    outcome = project
                if outcome is None:
                    continue
                for record in outcome.scraping_tasks:
                    local[record.task_handle] = (record.last_status, outcome.id)

            performance: list[TaskPerformance] = []
            for task in remote:
                usage = utilization.get(task.task_handle) or TaskUtilization()
                status, project_id = local.get(task.task_handle, (None, None))
                performance.append(
                    TaskPerformance(
                        task_handle=task.task_handle,
                        task_id=task.task_id,
                        status=status.value if status else (task.lifecycle_status or "UNKNOWN"),
                        lifecycle_status=task.lifecycle_status,
                        project_id=project_id,
                        started_at=task.started_at,
                        stopped_at=task.stopped_at,
                        cpu=usage.cpu,
                        memory=usage.memory,
                        containers=list(task.containers),
                    )
                )

            logger.info(
                "reconcile_sweep_finished",
                projects=len(projects),
                remote_tasks=len(remote),
                tracked_tasks=len(local),
            )
            return performance
