from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from backend.application import get_services
from backend.core.errors import DashboardError
from backend.core.schema import FilterSpec, LaunchRequest

from .errors import to_http

router = APIRouter(prefix="/estimates", tags=["estimates"])

_filter_spec = TypeAdapter(FilterSpec)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.get("/states")
async def list_states() -> dict:
    try:
        states = await get_services().resolver.available_states()
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {"states": states}


@router.get("/states/{state}/cities")
async def list_cities(state: str) -> dict:
    try:
        cities = await get_services().resolver.available_cities(state)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {"state": state, "cities": cities}


@router.post("/query-ids")
async def resolve_query_ids(payload: dict[str, Any] = Body(...)) -> dict:
    try:
        spec = _filter_spec.validate_python(payload)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=422, detail=jsonable_encoder(exc.errors(include_url=False))) from exc
    try:
        ids = await get_services().resolver.resolve(spec)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {"ids": ids, "count": len(ids)}


@router.post("/scraping")
async def start_scraping(payload: LaunchRequest) -> dict:
    """Split ``ids`` over ``task_count`` workers and start them."""

    try:
        tasks = await get_services().launcher.launch(payload.task_count, payload.ids)
    except DashboardError as exc:
        raise to_http(exc) from exc
    return {
        "message": f"Started {len(tasks)} scraping task(s)",
        "tasks": jsonable_encoder([asdict(task) for task in tasks]),
    }


@router.get("/performance")
async def get_performance(
    start_time: datetime | None = Query(default=None),
    end_time: datetime | None = Query(default=None),
) -> dict:
    start_time, end_time = _as_utc(start_time), _as_utc(end_time)
    if start_time and end_time and start_time > end_time:
        raise HTTPException(status_code=400, detail="start_time must not be after end_time")
    performance = await get_services().reconciler.reconcile_and_get_performance(start_time, end_time)
    return {"tasks": jsonable_encoder([asdict(item) for item in performance])}
