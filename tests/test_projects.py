from __future__ import annotations

import asyncio
from datetime import date

import pytest

from backend.application import configure_services, reset_services
from backend.core.errors import LaunchError, NotFoundError, PlatformError
from backend.core.retry import NO_RETRY
from backend.core.schema import (
    ByState,
    CityFilter,
    CreateProjectRequest,
    LaunchProjectRequest,
    ProjectSettings,
    ProjectTaskRecord,
    StateFilter,
    UpdateProjectRequest,
)
from backend.core.validation import ValidationError
from backend.domain import Controller, ProjectStatus, TaskStatus, WorkItem
from backend.infrastructure import InMemoryOrchestrationPlatform, InMemoryReferenceData


@pytest.fixture()
def orchestration() -> InMemoryOrchestrationPlatform:
    return InMemoryOrchestrationPlatform()


@pytest.fixture()
def services(orchestration):
    reference_data = InMemoryReferenceData(
        [WorkItem(identifier, "California", "San Jose", "Caterer") for identifier in range(10, 16)]
        + [WorkItem(40, "California", "Fresno", "Florist")]
    )
    yield configure_services(orchestration=orchestration, reference_data=reference_data, retry=NO_RETRY)
    reset_services()


def _launch_request(name: str = "Nightly", task_count: int = 2) -> LaunchProjectRequest:
    return LaunchProjectRequest(
        name=name,
        filters=ByState(
            states=[
                StateFilter(
                    state="California",
                    city_filters=[CityFilter(city="San Jose", business_types=["Caterer"])],
                )
            ]
        ),
        task_count=task_count,
        start_date=date(2024, 6, 1),
    )


@pytest.mark.asyncio
async def test_submitting_the_same_name_twice_merges(services):
    first = CreateProjectRequest(
        name="Nightly",
        settings=ProjectSettings(task_count=2),
        query_ids=[3, 1, 2],
        scraping_tasks=[ProjectTaskRecord(task_handle="t-1"), ProjectTaskRecord(task_handle="t-2")],
    )
    second = CreateProjectRequest(
        name="Nightly",
        settings=ProjectSettings(task_count=1),
        query_ids=[2, 4],
        scraping_tasks=[ProjectTaskRecord(task_handle="t-2"), ProjectTaskRecord(task_handle="t-3")],
    )

    created, was_created = await services.projects.submit_project(first)
    merged, merged_created = await services.projects.submit_project(second)

    assert was_created and not merged_created
    assert merged.id == created.id
    assert merged.query_ids == [1, 2, 3, 4]
    assert merged.query_count == 5
    assert merged.settings.task_count == 3
    assert [task.task_handle for task in merged.scraping_tasks] == ["t-1", "t-2", "t-3"]
    assert merged.status is ProjectStatus.RUNNING
    assert merged.updated_at >= created.updated_at
    assert len(await services.projects.list_projects()) == 1


@pytest.mark.asyncio
async def test_concurrent_submissions_with_one_name_create_one_project(services):
    requests = [
        CreateProjectRequest(name="Nightly", query_ids=[index], scraping_tasks=[ProjectTaskRecord(task_handle=f"t-{index}")])
        for index in range(5)
    ]
    await asyncio.gather(*(services.projects.submit_project(request) for request in requests))

    (project,) = await services.projects.list_projects()
    assert project.query_ids == [0, 1, 2, 3, 4]
    assert len(project.scraping_tasks) == 5


@pytest.mark.asyncio
async def test_launch_project_resolves_launches_and_persists(services, orchestration):
    project, created = await services.projects.launch_project(_launch_request())

    assert created
    assert project.query_ids == [10, 11, 12, 13, 14, 15]
    assert project.query_count == 6
    assert project.status is ProjectStatus.RUNNING
    assert project.settings.start_date == date(2024, 6, 1)
    assert not project.settings.entire_scraping
    payloads = [orchestration.payload(task.task_handle) for task in project.scraping_tasks]
    assert payloads == [[10, 11, 12], [13, 14, 15]]
    assert all(task.controller is Controller.AUTO for task in project.scraping_tasks)


@pytest.mark.asyncio
async def test_partial_launch_failure_persists_started_tasks(services, orchestration):
    orchestration.fail_launch_on = {1}

    with pytest.raises(LaunchError) as excinfo:
        await services.projects.launch_project(_launch_request())

    error = excinfo.value
    assert error.project_id is not None
    project = await services.projects.get_project(error.project_id)
    assert [task.task_handle for task in project.scraping_tasks] == [task.task_handle for task in error.launched]
    assert len(project.scraping_tasks) == 1


@pytest.mark.asyncio
async def test_total_launch_failure_persists_nothing(services, orchestration):
    orchestration.fail_launch_on = {1, 2}

    with pytest.raises(LaunchError) as excinfo:
        await services.projects.launch_project(_launch_request())

    assert excinfo.value.project_id is None
    assert await services.projects.list_projects() == []


@pytest.mark.asyncio
async def test_launch_with_empty_resolution_is_rejected(services):
    request = _launch_request()
    request.filters.states[0].state = "Oregon"
    with pytest.raises(ValidationError):
        await services.projects.launch_project(request)


@pytest.mark.asyncio
async def test_stop_start_and_restart(services, orchestration):
    project, _ = await services.projects.launch_project(_launch_request(task_count=1))
    (record,) = project.scraping_tasks
    handle = record.task_handle

    status, same = await services.projects.stop_task(project.id, handle)
    assert (status, same) == (TaskStatus.STOPPED, handle)
    stored = (await services.projects.get_project_tasks(project.id))[0]
    assert (stored.last_status, stored.controller) == (TaskStatus.STOPPED, Controller.MANUAL)

    # stopping again is a no-op
    assert (await services.projects.stop_task(project.id, handle))[0] is TaskStatus.STOPPED

    status, new_handle = await services.projects.start_task(project.id, handle)
    assert status is TaskStatus.RUNNING
    assert new_handle != handle
    assert orchestration.payload(new_handle) == orchestration.payload(handle)
    (started,) = await services.projects.get_project_tasks(project.id)
    assert (started.task_handle, started.last_status, started.controller) == (
        new_handle,
        TaskStatus.RUNNING,
        Controller.MANUAL,
    )

    with pytest.raises(ValidationError):
        await services.projects.start_task(project.id, new_handle)

    status, restarted = await services.projects.restart_task(project.id, new_handle)
    assert status is TaskStatus.RUNNING
    assert restarted not in (handle, new_handle)
    assert (await services.projects.get_project(project.id)).status is ProjectStatus.RUNNING


@pytest.mark.asyncio
async def test_task_actions_on_unknown_targets(services):
    project, _ = await services.projects.launch_project(_launch_request(task_count=1))
    with pytest.raises(NotFoundError):
        await services.projects.stop_task(project.id, "arn:local:ecs:task/local-cluster/ffffffff")
    with pytest.raises(NotFoundError):
        await services.projects.stop_task("missing", project.scraping_tasks[0].task_handle)


@pytest.mark.asyncio
async def test_task_logs(services, orchestration):
    project, _ = await services.projects.launch_project(_launch_request(task_count=1))
    handle = project.scraping_tasks[0].task_handle
    orchestration.add_logs(handle, "Processing 6 estimates", "All estimates processed successfully")

    assert await services.projects.get_task_logs(project.id, handle) == [
        "Processing 6 estimates",
        "All estimates processed successfully",
    ]


@pytest.mark.asyncio
async def test_update_and_delete(services):
    project, _ = await services.projects.launch_project(_launch_request(task_count=1))

    updated = await services.projects.update_project(
        project.id,
        UpdateProjectRequest(name="Weekly", settings=ProjectSettings(task_count=4, high_priority=True)),
    )
    assert updated.name == "Weekly"
    assert updated.settings.high_priority
    assert updated.query_ids == project.query_ids

    await services.projects.delete_project(project.id)
    with pytest.raises(NotFoundError):
        await services.projects.get_project(project.id)
    with pytest.raises(NotFoundError):
        await services.projects.delete_project(project.id)
    with pytest.raises(NotFoundError):
        await services.projects.update_project(project.id, UpdateProjectRequest(name="Gone"))


@pytest.mark.asyncio
async def test_failed_relaunch_leaves_restarted_task_stopped(services, orchestration):
    project, _ = await services.projects.launch_project(_launch_request(task_count=1))
    handle = project.scraping_tasks[0].task_handle
    orchestration.fail_launch_on = {orchestration.launch_calls + 1}

    with pytest.raises(PlatformError):
        await services.projects.restart_task(project.id, handle)

    (stored,) = await services.projects.get_project_tasks(project.id)
    assert (stored.task_handle, stored.last_status, stored.controller) == (
        handle,
        TaskStatus.STOPPED,
        Controller.MANUAL,
    )
    assert (await services.projects.get_project(project.id)).status is ProjectStatus.PENDING

    # the record is consistent, so a plain start recovers the task
    status, new_handle = await services.projects.start_task(project.id, handle)
    assert status is TaskStatus.RUNNING
    assert new_handle != handle


@pytest.mark.asyncio
async def test_record_run_stamps_time_and_bumps_counters(services):
    project, _ = await services.projects.launch_project(_launch_request(task_count=1))
    assert (project.last_run, project.success_count, project.failed_count) == (None, 0, 0)

    succeeded = await services.projects.record_run(project.id, True)
    failed = await services.projects.record_run(project.id, False)
    touched = await services.projects.record_run(project.id)

    assert (succeeded.success_count, succeeded.failed_count) == (1, 0)
    assert (failed.success_count, failed.failed_count) == (1, 1)
    assert (touched.success_count, touched.failed_count) == (1, 1)
    assert succeeded.last_run is not None
    assert touched.last_run >= failed.last_run >= succeeded.last_run
    assert touched.status is ProjectStatus.RUNNING

    with pytest.raises(NotFoundError):
        await services.projects.record_run("missing", True)
