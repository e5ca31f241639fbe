from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.application import get_services
from backend.core.logging import configure_logging
from backend.core.settings import get_settings
from backend.routes import estimates, projects
from backend.workers.reconciliation import ReconciliationWorker

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    worker = ReconciliationWorker(get_services().reconciler, settings.reconcile_interval_seconds)
    app.state.reconciliation_worker = worker
    worker.start()
    try:
        yield
    finally:
        await worker.stop()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(title="Scraping Dashboard API", version="0.0.1", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(estimates.router, prefix="/api")
    app.include_router(projects.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Scraping Dashboard API",
                "docs": "/docs",
                "health": "/api/projects",
                "backend": settings.backend,
            }
        )

    logger.info("app_created", backend=settings.backend)
    return app


app = create_app()
