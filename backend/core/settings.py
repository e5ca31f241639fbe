from __future__ import annotations

import os
from dataclasses import dataclass, field


DEFAULT_SUCCESS_MARKERS = ("All estimates processed successfully",)
DEFAULT_ERROR_MARKERS = ("Error processing estimates", "Fatal error")


def _split(value: str | None, sep: str, default: tuple[str, ...]) -> tuple[str, ...]:
    if not value:
        return default
    parts = tuple(part.strip() for part in value.split(sep) if part.strip())
    return parts or default


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(slots=True)
class Settings:
    """Process configuration, read once from the environment."""

    backend: str = "memory"
    aws_region: str = "us-west-1"
    ecs_cluster: str = "TestScrapingCluster"
    ecs_service: str = "test-scraping-service"
    ecs_task_family: str = "test-scraping-task"
    ecs_container_name: str = "test-scraping-container"
    ecs_container_image: str = ""
    ecs_subnets: tuple[str, ...] = ()
    ecs_execution_role_arn: str | None = None
    ecs_task_role_arn: str | None = None
    ecs_log_group: str = "/ecs/scraping-module"
    ecs_log_stream_prefix: str = "ecs"
    estimates_table: str = "Estimates"
    projects_table: str = "Projects"
    dynamodb_endpoint: str | None = None
    reference_data_csv: str | None = None
    reconcile_interval_seconds: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    success_markers: tuple[str, ...] = DEFAULT_SUCCESS_MARKERS
    error_markers: tuple[str, ...] = DEFAULT_ERROR_MARKERS
    log_level: str = "INFO"
    log_format: str = "console"
    cors_origins: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "Settings":
        origins_env = os.getenv("API_CORS_ORIGINS", "")
        origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
        if not origins:
            origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

        return cls(
            backend=(os.getenv("SCRAPER_BACKEND") or "memory").lower(),
            aws_region=os.getenv("AWS_REGION") or "us-west-1",
            ecs_cluster=os.getenv("ECS_CLUSTER") or "TestScrapingCluster",
            ecs_service=os.getenv("ECS_SERVICE") or "test-scraping-service",
            ecs_task_family=os.getenv("ECS_TASK_FAMILY") or "test-scraping-task",
            ecs_container_name=os.getenv("ECS_CONTAINER_NAME") or "test-scraping-container",
            ecs_container_image=os.getenv("ECS_CONTAINER_IMAGE") or "",
            ecs_subnets=_split(os.getenv("ECS_SUBNETS"), ",", ()),
            ecs_execution_role_arn=os.getenv("ECS_EXECUTION_ROLE_ARN") or None,
            ecs_task_role_arn=os.getenv("ECS_TASK_ROLE_ARN") or None,
            ecs_log_group=os.getenv("ECS_LOG_GROUP") or "/ecs/scraping-module",
            ecs_log_stream_prefix=os.getenv("ECS_LOG_STREAM_PREFIX") or "ecs",
            estimates_table=os.getenv("ESTIMATES_TABLE") or "Estimates",
            projects_table=os.getenv("PROJECTS_TABLE") or "Projects",
            dynamodb_endpoint=os.getenv("DYNAMODB_ENDPOINT") or None,
            reference_data_csv=os.getenv("REFERENCE_DATA_CSV") or None,
            reconcile_interval_seconds=_float("RECONCILE_INTERVAL_SECONDS", 30.0),
            retry_max_attempts=_int("RETRY_MAX_ATTEMPTS", 3),
            retry_base_delay=_float("RETRY_BASE_DELAY", 1.0),
            success_markers=_split(os.getenv("TASK_SUCCESS_MARKERS"), "|", DEFAULT_SUCCESS_MARKERS),
            error_markers=_split(os.getenv("TASK_ERROR_MARKERS"), "|", DEFAULT_ERROR_MARKERS),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            log_format=(os.getenv("LOG_FORMAT") or "console").lower(),
            cors_origins=origins,
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process settings, loading them on first use."""

    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (used in tests)."""

    global _settings
    _settings = None
