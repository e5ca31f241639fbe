from __future__ import annotations

from dataclasses import asdict

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder

from backend.core.errors import (
    DashboardError,
    LaunchError,
    NotFoundError,
    PlatformError,
    TransientInfraError,
)
from backend.core.validation import ValidationError


def to_http(exc: DashboardError) -> HTTPException:
    """Translate a dashboard error into the HTTP error the API answers with."""

    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, LaunchError):
        return HTTPException(
            status_code=502,
            detail={
                "message": str(exc),
                "failures": exc.failures,
                "tasks": jsonable_encoder([asdict(task) for task in exc.launched]),
                "project_id": exc.project_id,
            },
        )
    if isinstance(exc, TransientInfraError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, PlatformError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
