"""Error taxonomy shared by the resolver, launcher, reconciler and routes."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from backend.domain import RemoteTask


class DashboardError(Exception):
    """Base class for errors raised by the dashboard core."""


class TransientInfraError(DashboardError):
    """Timeout or throttling from a remote platform; safe to retry."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class PlatformError(DashboardError):
    """Non-retryable failure reported by a remote platform."""


class NotFoundError(DashboardError):
    """Raised when a project or task no longer exists."""


class LaunchError(DashboardError):
    """One or more task launches failed.

    ``launched`` holds the tasks that did start so callers can persist them
    instead of leaving untracked remote tasks behind.
    """

    def __init__(self, launched: list["RemoteTask"], failures: list[str]) -> None:
        super().__init__(f"{len(failures)} task launch(es) failed; {len(launched)} started")
        self.launched = launched
        self.failures = failures
        self.project_id: str | None = None
