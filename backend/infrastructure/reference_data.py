"""Read access to the estimates reference dataset."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Protocol

import pandas as pd

from backend.domain import WorkItem

REQUIRED_COLUMNS = ("id", "state", "city", "category")


class ReferenceDataQuery(Protocol):
    """Scan contract; implementations hide pagination from callers."""

    async def scan_all(self) -> list[WorkItem]: ...

    async def scan_by_state(self, state: str) -> list[WorkItem]: ...

    async def scan_by_state_city(self, state: str, city: str) -> list[WorkItem]: ...


def work_item_from_row(row: dict) -> WorkItem:
    return WorkItem(
        identifier=int(row["id"]),
        state=str(row.get("state") or ""),
        city=str(row.get("city") or ""),
        category=str(row.get("category") or ""),
    )


class InMemoryReferenceData:
    """Reference rows held in process; loaded from a CSV export in local mode."""

    def __init__(self, items: Iterable[WorkItem] = ()) -> None:
        self._items: list[WorkItem] = list(items)
        self.scan_calls: list[tuple[str, ...]] = []

    @classmethod
    def from_csv(cls, path: str | Path) -> "InMemoryReferenceData":
        frame = pd.read_csv(path, dtype={"state": "string", "city": "string", "category": "string"})
        missing = [column for column in REQUIRED_COLUMNS if column not in frame.columns]
        if missing:
            raise ValueError(f"reference CSV is missing columns: {', '.join(missing)}")
        frame = frame.dropna(subset=["id"]).fillna({"state": "", "city": "", "category": ""})
        records = frame[list(REQUIRED_COLUMNS)].to_dict(orient="records")
        return cls(work_item_from_row(record) for record in records)

    async def scan_all(self) -> list[WorkItem]:
        self.scan_calls.append(("all",))
        return list(self._items)

    async def scan_by_state(self, state: str) -> list[WorkItem]:
        self.scan_calls.append(("state", state))
        return [item for item in self._items if item.state == state]

    async def scan_by_state_city(self, state: str, city: str) -> list[WorkItem]:
        self.scan_calls.append(("state_city", state, city))
        return [item for item in self._items if item.state == state and item.city == city]
