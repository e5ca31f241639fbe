"""Resolve a user filter into the sorted set of estimate ids to scrape."""
from __future__ import annotations

from typing import Awaitable, Callable

import structlog

from backend.core.retry import ExponentialBackoff, call_with_retry
from backend.core.schema import ByState, CityFilter, EntireDataset, StateFilter
from backend.domain import WorkItem
from backend.infrastructure import ReferenceDataQuery

logger = structlog.get_logger(__name__)


class FilterResolver:
    """Turns a :data:`~backend.core.schema.FilterSpec` into query ids.

    Resolution is read-only. Each distinct scan runs at most once per call,
    matches are collected into a set and returned in ascending order.
    """

    def __init__(self, reference_data: ReferenceDataQuery, *, retry: ExponentialBackoff) -> None:
        self._reference_data = reference_data
        self._retry = retry

    async def _scan(
        self,
        cache: dict[tuple[str, ...], list[WorkItem]],
        key: tuple[str, ...],
        fn: Callable[..., Awaitable[list[WorkItem]]],
        *args: str,
    ) -> list[WorkItem]:
        if key not in cache:
            cache[key] = await call_with_retry(fn, *args, policy=self._retry, operation=f"reference.{key[0]}")
        return cache[key]

    async def _resolve_city(
        self,
        cache: dict[tuple[str, ...], list[WorkItem]],
        state: str,
        city_filter: CityFilter,
    ) -> set[int]:
        if city_filter.all_cities:
            # "All" cities stands for the whole state; business types are not applied
            rows = await self._scan(cache, ("state", state), self._reference_data.scan_by_state, state)
            return {row.identifier for row in rows}

        rows = await self._scan(
            cache,
            ("state_city", state, city_filter.city),
            self._reference_data.scan_by_state_city,
            state,
            city_filter.city,
        )
        categories = city_filter.categories
        if categories is None:
            return {row.identifier for row in rows}
        return {row.identifier for row in rows if row.category in categories}

    async def _resolve_state(
        self,
        cache: dict[tuple[str, ...], list[WorkItem]],
        state_filter: StateFilter,
    ) -> set[int]:
        state = state_filter.state
        if not state_filter.city_filters:
            rows = await self._scan(cache, ("state", state), self._reference_data.scan_by_state, state)
            return {row.identifier for row in rows}

        ids: set[int] = set()
        for city_filter in state_filter.city_filters:
            ids |= await self._resolve_city(cache, state, city_filter)
        return ids

    async def resolve(self, spec: EntireDataset | ByState) -> list[int]:
        cache: dict[tuple[str, ...], list[WorkItem]] = {}
        ids: set[int] = set()

        if isinstance(spec, EntireDataset):
            rows = await self._scan(cache, ("all",), self._reference_data.scan_all)
            ids = {row.identifier for row in rows}
        elif isinstance(spec, ByState):
            for state_filter in spec.states:
                ids |= await self._resolve_state(cache, state_filter)
        else:
            raise TypeError(f"unsupported filter spec: {type(spec).__name__}")

        resolved = sorted(ids)
        logger.info("filter_resolved", mode=spec.mode, count=len(resolved), scans=len(cache))
        return resolved

    # ------------------------------------------------------------------
    # filter form helpers
    # ------------------------------------------------------------------
    async def available_states(self) -> list[str]:
        rows = await call_with_retry(self._reference_data.scan_all, policy=self._retry, operation="reference.all")
        return sorted({row.state for row in rows if row.state})

    async def available_cities(self, state: str) -> list[str]:
        rows = await call_with_retry(
            self._reference_data.scan_by_state,
            state,
            policy=self._retry,
            operation="reference.state",
        )
        return sorted({row.city for row in rows if row.city})
