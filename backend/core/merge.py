"""Merge policy for projects submitted under an existing name."""
from __future__ import annotations

from backend.core.lifecycle import derive_project_status
from backend.core.schema import Project, utcnow


def merge_projects(existing: Project, incoming: Project) -> dict[str, object]:
    """Return the fields to write so ``existing`` absorbs ``incoming``.

    Query ids are unioned, counts summed and task records appended; handles
    already tracked by ``existing`` are not added twice.
    """

    query_ids = sorted(set(existing.query_ids) | set(incoming.query_ids))

    known = {record.task_handle for record in existing.scraping_tasks}
    tasks = list(existing.scraping_tasks)
    for record in incoming.scraping_tasks:
        if record.task_handle not in known:
            known.add(record.task_handle)
            tasks.append(record)

    settings = existing.settings.model_copy(
        update={"task_count": existing.settings.task_count + incoming.settings.task_count}
    )

    return {
        "query_ids": query_ids,
        "query_count": existing.query_count + incoming.query_count,
        "settings": settings,
        "scraping_tasks": tasks,
        "status": derive_project_status(tasks),
        "updated_at": utcnow(),
    }
