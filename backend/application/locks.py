from __future__ import annotations

import asyncio


class ProjectLocks:
    """One :class:`asyncio.Lock` per project id.

    Every read-modify-write of a project (reconciliation, operator actions,
    merges) runs under its lock, so task lists are replaced whole and never
    interleave field by field.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_project(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock

    def discard(self, project_id: str) -> None:
        self._locks.pop(project_id, None)
