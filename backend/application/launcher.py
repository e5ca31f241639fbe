"""Distribute query ids over worker tasks and start them."""
from __future__ import annotations

from typing import Sequence

import structlog

from backend.core.errors import LaunchError
from backend.core.partition import partition
from backend.core.retry import ExponentialBackoff, call_with_retry
from backend.core.validation import validate_launch_ids, validate_task_count
from backend.domain import RemoteTask
from backend.infrastructure import OrchestrationPlatform

logger = structlog.get_logger(__name__)


class TaskLauncher:
    def __init__(self, orchestration: OrchestrationPlatform, *, retry: ExponentialBackoff) -> None:
        self._orchestration = orchestration
        self._retry = retry

    async def launch(self, task_count: int, ids: Sequence[int]) -> list[RemoteTask]:
        """Start one task per non-empty slice of ``ids``.

        Launch calls are not retried. When some of them fail, every slice is
        still attempted and a :class:`LaunchError` carrying the started tasks
        is raised afterwards.
        """

        validate_task_count(task_count)
        validate_launch_ids(ids)

        template = await call_with_retry(
            self._orchestration.ensure_template,
            policy=self._retry,
            operation="orchestration.ensure_template",
        )
        slices = partition(list(ids), task_count)

        launched: list[RemoteTask] = []
        failures: list[str] = []
        for index, chunk in enumerate(slices):
            try:
                task = await self._orchestration.launch(template, chunk)
            except Exception as exc:
                logger.error("task_launch_failed", slice=index, size=len(chunk), error=str(exc))
                failures.append(f"slice {index}: {exc}")
                continue
            launched.append(task)

        logger.info(
            "tasks_launched",
            requested=task_count,
            slices=len(slices),
            started=len(launched),
            failed=len(failures),
            template=template,
        )
        if failures:
            raise LaunchError(launched, failures)
        return launched
