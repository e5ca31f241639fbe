"""Infrastructure layer exports."""

from .orchestration import (
    InMemoryLogPlatform,
    InMemoryMetricsPlatform,
    InMemoryOrchestrationPlatform,
    LogPlatform,
    MetricsPlatform,
    OrchestrationPlatform,
)
from .projects import InMemoryProjectRepository, ProjectRepository
from .reference_data import InMemoryReferenceData, ReferenceDataQuery

__all__ = [
    "InMemoryLogPlatform",
    "InMemoryMetricsPlatform",
    "InMemoryOrchestrationPlatform",
    "InMemoryProjectRepository",
    "InMemoryReferenceData",
    "LogPlatform",
    "MetricsPlatform",
    "OrchestrationPlatform",
    "ProjectRepository",
    "ReferenceDataQuery",
]
