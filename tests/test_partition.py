from __future__ import annotations

import math

import pytest

from backend.core.partition import partition
from backend.core.validation import ValidationError


def test_partition_ten_ids_over_three_tasks():
    assert partition(list(range(1, 11)), 3) == [[1, 2, 3, 4], [5, 6, 7, 8], [9, 10]]


@pytest.mark.parametrize("size,task_count", [(1, 1), (7, 2), (10, 10), (100, 7), (3, 8), (64, 4)])
def test_partition_is_complete_and_bounded(size, task_count):
    ids = list(range(100, 100 + size))
    slices = partition(ids, task_count)

    assert [item for chunk in slices for item in chunk] == ids
    assert sum(len(chunk) for chunk in slices) == size
    assert len(slices) <= task_count

    per_task = math.ceil(size / task_count)
    assert all(len(chunk) == per_task for chunk in slices[:-1])
    assert 0 < len(slices[-1]) <= per_task


def test_partition_drops_slices_past_the_end():
    # ceil(5 / 4) == 2 leaves the fourth slice empty
    assert partition([1, 2, 3, 4, 5], 4) == [[1, 2], [3, 4], [5]]


def test_partition_of_empty_input_is_empty():
    assert partition([], 3) == []


@pytest.mark.parametrize("task_count", [0, -1, True, 2.5])
def test_partition_rejects_invalid_task_count(task_count):
    with pytest.raises(ValidationError):
        partition([1, 2, 3], task_count)
