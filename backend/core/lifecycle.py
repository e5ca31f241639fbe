"""Task lifecycle rules: remote state inference, transitions and project status."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from backend.core.schema import ProjectTaskRecord
from backend.domain import (
    STARTING_STATES,
    Controller,
    ProjectStatus,
    RemoteLifecycle,
    RemoteTask,
    TaskStatus,
)

USER_STOP_REASON = "Stopped by user"

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.RUNNING: frozenset({TaskStatus.STOPPED, TaskStatus.SUCCESSFUL, TaskStatus.FAILED}),
    TaskStatus.STOPPED: frozenset({TaskStatus.SUCCESSFUL, TaskStatus.FAILED}),
    TaskStatus.SUCCESSFUL: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


@dataclass(slots=True, frozen=True)
class Inference:
    """Status implied by the remote lifecycle.

    ``needs_logs`` means the remote state alone is ambiguous and the task
    logs decide between Successful, Failed and Stopped.
    """

    status: TaskStatus
    controller: Controller = Controller.AUTO
    needs_logs: bool = False


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def is_manual_stop(record: ProjectTaskRecord, remote: RemoteTask, stop_reason: str = USER_STOP_REASON) -> bool:
    if record.last_status is TaskStatus.STOPPED and record.controller is Controller.MANUAL:
        return True
    return bool(remote.stopped_reason) and remote.stopped_reason == stop_reason


def infer_from_remote(
    record: ProjectTaskRecord,
    remote: RemoteTask,
    *,
    stop_reason: str = USER_STOP_REASON,
) -> Inference | None:
    """Map a remote lifecycle onto a local status, or ``None`` if undecidable."""

    lifecycle = remote.lifecycle
    if lifecycle is None:
        return None
    if lifecycle is RemoteLifecycle.RUNNING or lifecycle in STARTING_STATES:
        return Inference(TaskStatus.RUNNING)
    if lifecycle is RemoteLifecycle.FAILED:
        return Inference(TaskStatus.FAILED)
    if lifecycle is RemoteLifecycle.STOPPED:
        if is_manual_stop(record, remote, stop_reason):
            return Inference(TaskStatus.STOPPED, Controller.MANUAL)
        return Inference(TaskStatus.STOPPED, needs_logs=True)
    # still draining, wait for STOPPED
    return None


def classify_logs(
    lines: Iterable[str],
    success_markers: Sequence[str],
    error_markers: Sequence[str],
) -> TaskStatus | None:
    """Return Successful or Failed if a marker is present; success wins."""

    saw_error = False
    for line in lines:
        if any(marker in line for marker in success_markers):
            return TaskStatus.SUCCESSFUL
        if not saw_error and any(marker in line for marker in error_markers):
            saw_error = True
    return TaskStatus.FAILED if saw_error else None


def apply_transition(
    record: ProjectTaskRecord,
    status: TaskStatus,
    controller: Controller,
) -> ProjectTaskRecord:
    """Return the record moved to ``status`` if the move is legal, else unchanged."""

    if record.last_status is status or not can_transition(record.last_status, status):
        return record
    return record.model_copy(update={"last_status": status, "controller": controller})


def derive_project_status(records: Sequence[ProjectTaskRecord]) -> ProjectStatus:
    if not records:
        return ProjectStatus.PENDING
    statuses = [record.last_status for record in records]
    if TaskStatus.RUNNING in statuses:
        return ProjectStatus.RUNNING
    if all(status is TaskStatus.SUCCESSFUL for status in statuses):
        return ProjectStatus.COMPLETED
    if all(status is TaskStatus.FAILED for status in statuses):
        return ProjectStatus.FAILED
    return ProjectStatus.PENDING


def count_outcomes(
    before: Sequence[ProjectTaskRecord],
    after: Sequence[ProjectTaskRecord],
) -> tuple[int, int]:
    """Count tasks that became Successful and Failed between two task lists."""

    previous = {record.task_handle: record.last_status for record in before}
    successes = failures = 0
    for record in after:
        if previous.get(record.task_handle) is record.last_status:
            continue
        if record.last_status is TaskStatus.SUCCESSFUL:
            successes += 1
        elif record.last_status is TaskStatus.FAILED:
            failures += 1
    return successes, failures
