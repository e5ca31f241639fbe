"""Application services and their process-wide wiring."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from backend.core.retry import ExponentialBackoff
from backend.core.settings import Settings, get_settings
from backend.infrastructure import (
    InMemoryLogPlatform,
    InMemoryMetricsPlatform,
    InMemoryOrchestrationPlatform,
    InMemoryProjectRepository,
    InMemoryReferenceData,
    LogPlatform,
    MetricsPlatform,
    OrchestrationPlatform,
    ProjectRepository,
    ReferenceDataQuery,
)

from .filters import FilterResolver
from .launcher import TaskLauncher
from .locks import ProjectLocks
from .projects import ProjectService
from .reconciler import StatusReconciler, TaskPerformance

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class Services:
    """Everything a request handler or background worker needs."""

    reference_data: ReferenceDataQuery
    repository: ProjectRepository
    orchestration: OrchestrationPlatform
    metrics: MetricsPlatform
    logs: LogPlatform
    resolver: FilterResolver
    launcher: TaskLauncher
    reconciler: StatusReconciler
    projects: ProjectService


def build_services(
    settings: Settings,
    *,
    reference_data: ReferenceDataQuery,
    repository: ProjectRepository,
    orchestration: OrchestrationPlatform,
    metrics: MetricsPlatform,
    logs: LogPlatform,
    retry: ExponentialBackoff | None = None,
) -> Services:
    policy = retry or ExponentialBackoff(
        max_retries=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
    )
    locks = ProjectLocks()
    resolver = FilterResolver(reference_data, retry=policy)
    launcher = TaskLauncher(orchestration, retry=policy)
    reconciler = StatusReconciler(
        repository,
        orchestration,
        metrics,
        logs,
        locks,
        retry=policy,
        success_markers=settings.success_markers,
        error_markers=settings.error_markers,
    )
    projects = ProjectService(
        repository,
        resolver,
        launcher,
        orchestration,
        logs,
        locks,
        retry=policy,
    )
    return Services(
        reference_data=reference_data,
        repository=repository,
        orchestration=orchestration,
        metrics=metrics,
        logs=logs,
        resolver=resolver,
        launcher=launcher,
        reconciler=reconciler,
        projects=projects,
    )


def _memory_services(settings: Settings) -> Services:
    if settings.reference_data_csv:
        reference_data = InMemoryReferenceData.from_csv(settings.reference_data_csv)
    else:
        reference_data = InMemoryReferenceData()
    orchestration = InMemoryOrchestrationPlatform()
    return build_services(
        settings,
        reference_data=reference_data,
        repository=InMemoryProjectRepository(),
        orchestration=orchestration,
        metrics=InMemoryMetricsPlatform(),
        logs=InMemoryLogPlatform(orchestration),
    )


def _aws_services(settings: Settings) -> Services:
    from backend.infrastructure.aws import (
        CloudWatchLogPlatform,
        CloudWatchMetricsPlatform,
        EcsOrchestrationPlatform,
    )
    from backend.infrastructure.dynamodb import (
        DynamoProjectRepository,
        DynamoReferenceData,
        dynamodb_resource,
    )

    resource = dynamodb_resource(settings.aws_region, settings.dynamodb_endpoint)
    orchestration = EcsOrchestrationPlatform(
        cluster=settings.ecs_cluster,
        task_family=settings.ecs_task_family,
        container_name=settings.ecs_container_name,
        container_image=settings.ecs_container_image,
        subnets=settings.ecs_subnets,
        region=settings.aws_region,
        execution_role_arn=settings.ecs_execution_role_arn,
        task_role_arn=settings.ecs_task_role_arn,
        log_group=settings.ecs_log_group,
        log_stream_prefix=settings.ecs_log_stream_prefix,
    )
    return build_services(
        settings,
        reference_data=DynamoReferenceData(settings.estimates_table, resource=resource),
        repository=DynamoProjectRepository(settings.projects_table, resource=resource),
        orchestration=orchestration,
        metrics=CloudWatchMetricsPlatform(
            cluster=settings.ecs_cluster,
            service=settings.ecs_service,
            region=settings.aws_region,
        ),
        logs=CloudWatchLogPlatform(
            log_group=settings.ecs_log_group,
            stream_prefix=settings.ecs_log_stream_prefix,
            container_name=settings.ecs_container_name,
            region=settings.aws_region,
        ),
    )


def services_from_settings(settings: Settings) -> Services:
    if settings.backend == "aws":
        services = _aws_services(settings)
    elif settings.backend == "memory":
        services = _memory_services(settings)
    else:
        raise ValueError(f"unknown SCRAPER_BACKEND {settings.backend!r}; expected 'memory' or 'aws'")
    logger.info("services_configured", backend=settings.backend)
    return services


_services: Services | None = None


def get_services() -> Services:
    """Return the process services, building them from settings on first use."""

    global _services
    if _services is None:
        _services = services_from_settings(get_settings())
    return _services


def configure_services(services: Services | None = None, **overrides: Any) -> Services:
    """Install ``services`` (or a memory-backed set with ``overrides``) globally."""

    global _services
    if services is None:
        orchestration = overrides.get("orchestration") or InMemoryOrchestrationPlatform()
        logs = overrides.get("logs")
        if logs is None:
            if not isinstance(orchestration, InMemoryOrchestrationPlatform):
                raise ValueError("a log platform is required with a non in-memory orchestration platform")
            logs = InMemoryLogPlatform(orchestration)
        services = build_services(
            get_settings(),
            reference_data=overrides.get("reference_data") or InMemoryReferenceData(),
            repository=overrides.get("repository") or InMemoryProjectRepository(),
            orchestration=orchestration,
            metrics=overrides.get("metrics") or InMemoryMetricsPlatform(),
            logs=logs,
            retry=overrides.get("retry"),
        )
    _services = services
    return services


def reset_services() -> None:
    global _services
    _services = None


__all__ = [
    "FilterResolver",
    "ProjectLocks",
    "ProjectService",
    "Services",
    "StatusReconciler",
    "TaskLauncher",
    "TaskPerformance",
    "build_services",
    "configure_services",
    "get_services",
    "reset_services",
    "services_from_settings",
]
