from __future__ import annotations

from typing import Sequence

from backend.core.errors import DashboardError


class ValidationError(DashboardError):
    """Raised when caller input cannot be processed."""


def validate_task_count(task_count: int) -> None:
    if isinstance(task_count, bool) or not isinstance(task_count, int):
        raise ValidationError("task count must be an integer")
    if task_count < 1:
        raise ValidationError("task count must be a positive integer")


def validate_launch_ids(ids: Sequence[int]) -> None:
    if not ids:
        raise ValidationError("query list is empty; nothing to schedule")
