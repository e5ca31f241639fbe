from __future__ import annotations

import math
from typing import Sequence

from backend.core.validation import ValidationError


def partition(ids: Sequence[int], task_count: int) -> list[list[int]]:
    """Split ``ids`` into at most ``task_count`` contiguous, near-equal slices.

    Every slice except possibly the last holds ``ceil(len(ids) / task_count)``
    items. Slices that would start past the end are omitted, so fewer than
    ``task_count`` slices come back when there are fewer ids than tasks, and
    none at all for an empty input.
    """

    if isinstance(task_count, bool) or not isinstance(task_count, int) or task_count < 1:
        raise ValidationError("task count must be a positive integer")

    total = len(ids)
    if total == 0:
        return []

    per_task = math.ceil(total / task_count)
    slices: list[list[int]] = []
    for index in range(task_count):
        start = index * per_task
        if start >= total:
            break
        slices.append(list(ids[start : min(start + per_task, total)]))
    return slices
