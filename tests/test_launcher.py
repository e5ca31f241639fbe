from __future__ import annotations

import asyncio

import pytest

from backend.application import TaskLauncher
from backend.core.errors import LaunchError, TransientInfraError
from backend.core.retry import ExponentialBackoff, NO_RETRY
from backend.core.validation import ValidationError
from backend.infrastructure import InMemoryOrchestrationPlatform


@pytest.fixture()
def orchestration() -> InMemoryOrchestrationPlatform:
    return InMemoryOrchestrationPlatform()


@pytest.mark.asyncio
async def test_launch_starts_one_task_per_slice(orchestration):
    launcher = TaskLauncher(orchestration, retry=NO_RETRY)

    tasks = await launcher.launch(3, list(range(1, 11)))

    assert len(tasks) == 3
    assert [orchestration.payload(task.task_handle) for task in tasks] == [
        [1, 2, 3, 4],
        [5, 6, 7, 8],
        [9, 10],
    ]
    assert all(task.template_handle == "local-task-definition:1" for task in tasks)
    assert orchestration.template_calls == 1


@pytest.mark.asyncio
async def test_launch_with_more_tasks_than_ids(orchestration):
    tasks = await TaskLauncher(orchestration, retry=NO_RETRY).launch(5, [7, 8])
    assert len(tasks) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("task_count,ids", [(0, [1]), (-2, [1]), (2, [])])
async def test_launch_rejects_invalid_input(orchestration, task_count, ids):
    with pytest.raises(ValidationError):
        await TaskLauncher(orchestration, retry=NO_RETRY).launch(task_count, ids)
    assert orchestration.launch_calls == 0


@pytest.mark.asyncio
async def test_partial_failure_reports_started_tasks(orchestration):
    orchestration.fail_launch_on = {2}
    launcher = TaskLauncher(orchestration, retry=NO_RETRY)

    with pytest.raises(LaunchError) as excinfo:
        await launcher.launch(3, list(range(1, 10)))

    error = excinfo.value
    assert len(error.launched) == 2
    assert len(error.failures) == 1
    assert "slice 1" in error.failures[0]
    assert orchestration.launch_calls == 3
    assert [orchestration.payload(task.task_handle) for task in error.launched] == [[1, 2, 3], [7, 8, 9]]


@pytest.mark.asyncio
async def test_launch_is_not_retried(orchestration):
    orchestration.fail_launch_on = {1}
    policy = ExponentialBackoff(max_retries=5, base_delay=0, jitter=False)

    with pytest.raises(LaunchError):
        await TaskLauncher(orchestration, retry=policy).launch(1, [1, 2])
    assert orchestration.launch_calls == 1


class FlakyTemplate(InMemoryOrchestrationPlatform):
    async def ensure_template(self) -> str:
        self.template_calls += 1
        if self.template_calls == 1:
            raise TransientInfraError("throttled", operation="ecs.list_task_definitions")
        return "flaky-definition:3"


@pytest.mark.asyncio
async def test_template_resolution_is_retried():
    orchestration = FlakyTemplate()
    policy = ExponentialBackoff(max_retries=2, base_delay=0, jitter=False)

    tasks = await TaskLauncher(orchestration, retry=policy).launch(1, [1])

    assert orchestration.template_calls == 2
    assert tasks[0].template_handle == "flaky-definition:3"


@pytest.mark.asyncio
async def test_concurrent_launches_share_the_platform(orchestration):
    launcher = TaskLauncher(orchestration, retry=NO_RETRY)
    first, second = await asyncio.gather(launcher.launch(2, [1, 2, 3]), launcher.launch(1, [4]))
    handles = {task.task_handle for task in [*first, *second]}
    assert len(handles) == 3
