"""Project use cases: submission, launch, edits and operator task actions."""
from __future__ import annotations

import asyncio
from typing import Any

import structlog

from backend.core.errors import LaunchError, NotFoundError
from backend.core.lifecycle import derive_project_status
from backend.core.merge import merge_projects
from backend.core.retry import ExponentialBackoff, call_with_retry
from backend.core.schema import (
    CreateProjectRequest,
    EntireDataset,
    LaunchProjectRequest,
    Project,
    ProjectSettings,
    ProjectTaskRecord,
    UpdateProjectRequest,
    utcnow,
)
from backend.core.validation import ValidationError
from backend.domain import Controller, RemoteTask, TaskStatus
from backend.infrastructure import LogPlatform, OrchestrationPlatform, ProjectRepository

from .filters import FilterResolver
from .launcher import TaskLauncher
from .locks import ProjectLocks

logger = structlog.get_logger(__name__)


def record_for(task: RemoteTask, controller: Controller = Controller.AUTO) -> ProjectTaskRecord:
    return ProjectTaskRecord(
        task_handle=task.task_handle,
        last_status=TaskStatus.RUNNING,
        controller=controller,
        started_at=task.started_at or task.created_at,
    )


class ProjectService:
    """Coordinates project persistence with the orchestration platform."""

    def __init__(
        self,
        repository: ProjectRepository,
        resolver: FilterResolver,
        launcher: TaskLauncher,
        orchestration: OrchestrationPlatform,
        logs: LogPlatform,
        locks: ProjectLocks,
        *,
        retry: ExponentialBackoff,
    ) -> None:
        self._repository = repository
        self._resolver = resolver
        self._launcher = launcher
        self._orchestration = orchestration
        self._logs = logs
        self._locks = locks
        self._retry = retry
        self._create_lock = asyncio.Lock()

    async def _store(self, operation: str, fn: Any, *args: Any) -> Any:
        return await call_with_retry(fn, *args, policy=self._retry, operation=f"projects.{operation}")

    async def _require(self, project_id: str) -> Project:
        project = await self._store("get_by_id", self._repository.get_by_id, project_id)
        if project is None:
            raise NotFoundError(f"project {project_id} not found")
        return project

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    async def list_projects(self) -> list[Project]:
        return await self._store("get_all", self._repository.get_all)

    async def get_project(self, project_id: str) -> Project:
        return await self._require(project_id)

    async def get_project_tasks(self, project_id: str) -> list[ProjectTaskRecord]:
        project = await self._require(project_id)
        return list(project.scraping_tasks)

    async def get_task_logs(self, project_id: str, task_handle: str) -> list[str]:
        project = await self._require(project_id)
        if project.find_task(task_handle) is None:
            raise NotFoundError(f"task {task_handle} not found in project {project_id}")
        return await call_with_retry(
            self._logs.fetch_logs,
            task_handle,
            policy=self._retry,
            operation="logs.fetch",
        )

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------
    async def _create_or_merge(self, incoming: Project) -> tuple[Project, bool]:
        """Persist ``incoming``, merging it into a same-named project if one exists."""

        async with self._create_lock:
            projects = await self._store("get_all", self._repository.get_all)
            existing = next((project for project in projects if project.name == incoming.name), None)
            if existing is None:
                created = await self._store("create", self._repository.create, incoming)
                logger.info(
                    "project_created",
                    project_id=created.id,
                    name=created.name,
                    tasks=len(created.scraping_tasks),
                )
                return created, True

            async with self._locks.for_project(existing.id):
                current = await self._require(existing.id)
                fields = merge_projects(current, incoming)
                merged = await self._store("update", self._repository.update, current.id, fields)
            logger.info(
                "project_merged",
                project_id=merged.id,
                name=merged.name,
                added_tasks=len(merged.scraping_tasks) - len(current.scraping_tasks),
            )
            return merged, False

    async def submit_project(self, request: CreateProjectRequest) -> tuple[Project, bool]:
        """Record tasks the client already launched; returns ``(project, created)``."""

        query_ids = sorted(set(request.query_ids))
        query_count = request.query_count if request.query_count is not None else len(query_ids)
        tasks = list({record.task_handle: record for record in request.scraping_tasks}.values())
        incoming = Project(
            name=request.name.strip(),
            settings=request.settings,
            filters=request.filters,
            query_count=query_count,
            query_ids=query_ids,
            scraping_tasks=tasks,
            status=derive_project_status(tasks),
        )
        return await self._create_or_merge(incoming)

    async def launch_project(self, request: LaunchProjectRequest) -> tuple[Project, bool]:
        """Resolve the filter, start the tasks and persist the project.

        If only some launches succeed the started tasks are still persisted;
        the :class:`LaunchError` is re-raised with ``project_id`` set.
        """

        ids = await self._resolver.resolve(request.filters)
        settings = ProjectSettings(
            task_count=request.task_count,
            start_date=request.start_date,
            entire_scraping=isinstance(request.filters, EntireDataset),
            high_priority=request.high_priority,
            custom_query=request.custom_query,
        )

        failure: LaunchError | None = None
        try:
            launched = await self._launcher.launch(request.task_count, ids)
        except LaunchError as exc:
            if not exc.launched:
                raise
            failure = exc
            launched = exc.launched

        tasks = [record_for(task) for task in launched]
        incoming = Project(
            name=request.name.strip(),
            settings=settings,
            filters=request.filters,
            query_count=len(ids),
            query_ids=ids,
            scraping_tasks=tasks,
            status=derive_project_status(tasks),
        )
        project, created = await self._create_or_merge(incoming)
        if failure is not None:
            failure.project_id = project.id
            raise failure
        return project, created

    # ------------------------------------------------------------------
    # edits
    # ------------------------------------------------------------------
    async def update_project(self, project_id: str, request: UpdateProjectRequest) -> Project:
        fields = request.model_dump(exclude_unset=True, exclude_none=True)
        if "name" in fields:
            fields["name"] = fields["name"].strip()
        if "settings" in fields:
            fields["settings"] = request.settings
        if "filters" in fields:
            fields["filters"] = request.filters

        async with self._locks.for_project(project_id):
            if not fields:
                return await self._require(project_id)
            project = await self._store("update", self._repository.update, project_id, fields)
        logger.info("project_updated", project_id=project_id, fields=sorted(fields))
        return project

    async def record_run(self, project_id: str, success: bool | None = None) -> Project:
        """Stamp ``last_run`` and bump the matching run counter.

        The project status stays derived from its tasks.
        """

        async with self._locks.for_project(project_id):
            project = await self._require(project_id)
            fields: dict[str, Any] = {"last_run": utcnow()}
            if success is True:
                fields["success_count"] = project.success_count + 1
            elif success is False:
                fields["failed_count"] = project.failed_count + 1
            project = await self._store("update", self._repository.update, project_id, fields)
        logger.info("project_run_recorded", project_id=project_id, success=success)
        return project

    async def delete_project(self, project_id: str) -> None:
        async with self._locks.for_project(project_id):
            deleted = await self._store("delete", self._repository.delete, project_id)
        self._locks.discard(project_id)
        if not deleted:
            raise NotFoundError(f"project {project_id} not found")
        logger.info("project_deleted", project_id=project_id)

    # ------------------------------------------------------------------
    # operator task actions
    # ------------------------------------------------------------------
    async def _replace_task(
        self,
        project: Project,
        old_handle: str,
        record: ProjectTaskRecord,
    ) -> Project:
        tasks = [record if item.task_handle == old_handle else item for item in project.scraping_tasks]
        return await self._store(
            "update",
            self._repository.update,
            project.id,
            {"scraping_tasks": tasks, "status": derive_project_status(tasks)},
        )

    async def _locate(self, project_id: str, task_handle: str) -> tuple[Project, ProjectTaskRecord]:
        project = await self._require(project_id)
        record = project.find_task(task_handle)
        if record is None:
            raise NotFoundError(f"task {task_handle} not found in project {project_id}")
        return project, record

    async def stop_task(self, project_id: str, task_handle: str) -> tuple[TaskStatus, str]:
        """Stop a running task; other states are returned unchanged."""

        async with self._locks.for_project(project_id):
            project, record = await self._locate(project_id, task_handle)
            if record.last_status is not TaskStatus.RUNNING:
                return record.last_status, task_handle

            await self._orchestration.stop(task_handle)
            stopped = record.model_copy(
                update={"last_status": TaskStatus.STOPPED, "controller": Controller.MANUAL}
            )
            await self._replace_task(project, task_handle, stopped)
        logger.info("task_stopped", project_id=project_id, task=task_handle)
        return TaskStatus.STOPPED, task_handle

    async def start_task(self, project_id: str, task_handle: str) -> tuple[TaskStatus, str]:
        """Relaunch a finished task from its previous configuration.

        The record is replaced by the new task as ``Running/manual``.
        """

        async with self._locks.for_project(project_id):
            project, record = await self._locate(project_id, task_handle)
            if record.last_status is TaskStatus.RUNNING:
                raise ValidationError(f"task {task_handle} is already running")

            task = await self._orchestration.relaunch(task_handle)
            await self._replace_task(project, task_handle, record_for(task, Controller.MANUAL))
        logger.info("task_started", project_id=project_id, task=task_handle, new_task=task.task_handle)
        return TaskStatus.RUNNING, task.task_handle

    async def restart_task(self, project_id: str, task_handle: str) -> tuple[TaskStatus, str]:
        async with self._locks.for_project(project_id):
            project, record = await self._locate(project_id, task_handle)
            if record.last_status is TaskStatus.RUNNING:
                await self._orchestration.stop(task_handle)
                # persisted before the relaunch so a failed relaunch leaves a stopped record
                stopped = record.model_copy(
                    update={"last_status": TaskStatus.STOPPED, "controller": Controller.MANUAL}
                )
                project = await self._replace_task(project, task_handle, stopped)
            task = await self._orchestration.relaunch(task_handle)
            await self._replace_task(project, task_handle, record_for(task, Controller.MANUAL))
        logger.info("task_restarted", project_id=project_id, task=task_handle, new_task=task.task_handle)
        return TaskStatus.RUNNING, task.task_handle
