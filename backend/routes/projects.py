from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response
from fastapi.encoders import jsonable_encoder

from backend.application import get_services
from backend.core.errors import DashboardError
from backend.core.schema import (
    CreateProjectRequest,
    LaunchProjectRequest,
    Project,
    RecordRunRequest,
    UpdateProjectRequest,
)

from .errors import to_http

router = APIRouter(prefix="/projects", tags=["projects"])

TASK_ACTIONS = ("start", "stop", "restart")


def _project(project: Project) -> dict:
    return jsonable_encoder(project.model_dump(mode="json"))


@router.get("")
async def list_projects() -> dict:
    try:
        projects = await get_services().projects.list_projects()
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {"items": [_project(project) for project in projects]}


@router.post("")
async def submit_project(payload: CreateProjectRequest, response: Response) -> dict:
    """Record a project whose tasks the client already started; same names merge."""

    try:
        project, created = await get_services().projects.submit_project(payload)
    except DashboardError as exc:
        raise to_http(exc) from exc
    response.status_code = 201 if created else 200
    return {"project": _project(project), "merged": not created}


@router.post("/launch")
async def launch_project(payload: LaunchProjectRequest, response: Response) -> dict:
    try:
        project, created = await get_services().projects.launch_project(payload)
    except DashboardError as exc:
        raise to_http(exc) from exc
    response.status_code = 201 if created else 200
    return {"project": _project(project), "merged": not created}


@router.get("/{project_id}")
async def get_project(project_id: str) -> dict:
    try:
        project = await get_services().projects.get_project(project_id)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return _project(project)


@router.put("/{project_id}")
async def update_project(project_id: str, payload: UpdateProjectRequest) -> dict:
    try:
        project = await get_services().projects.update_project(project_id, payload)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return _project(project)


@router.delete("/{project_id}")
async def delete_project(project_id: str) -> dict:
    try:
        await get_services().projects.delete_project(project_id)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {"message": "Project deleted successfully", "id": project_id}


@router.post("/{project_id}/status")
async def record_run(project_id: str, payload: RecordRunRequest) -> dict:
    """Record that a run finished; status itself stays derived from the tasks."""

    try:
        project = await get_services().projects.record_run(project_id, payload.success)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return _project(project)


@router.get("/{project_id}/tasks")
async def list_project_tasks(project_id: str) -> dict:
    try:
        tasks = await get_services().projects.get_project_tasks(project_id)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {"items": [task.model_dump(mode="json") for task in tasks]}


@router.get("/{project_id}/tasks/{task_handle:path}/logs")
async def get_task_logs(project_id: str, task_handle: str) -> dict:
    try:
        lines = await get_services().projects.get_task_logs(project_id, task_handle)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {"task_handle": task_handle, "logs": lines}


@router.post("/{project_id}/tasks/{task_handle:path}/{action}")
async def task_action(project_id: str, task_handle: str, action: str) -> dict:
    if action not in TASK_ACTIONS:
        raise HTTPException(status_code=404, detail=f"unknown task action {action!r}")
    service = get_services().projects
    handler = {
        "start": service.start_task,
        "stop": service.stop_task,
        "restart": service.restart_task,
    }[action]
    try:
        status, handle = await handler(project_id, task_handle)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {"status": status.value, "task_handle": handle}
