from __future__ import annotations

import asyncio
import contextlib

import structlog

from backend.application import StatusReconciler

logger = structlog.get_logger(__name__)


class ReconciliationWorker:
    """Runs a reconciliation sweep every ``interval`` seconds until stopped."""

    def __init__(self, reconciler: StatusReconciler, interval: float) -> None:
        self._reconciler = reconciler
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0:
            logger.info("reconcile_worker_disabled")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="reconciliation-worker")
        logger.info("reconcile_worker_started", interval=self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("reconcile_worker_stopped", sweeps=self.sweeps)

    async def run_once(self) -> None:
        try:
            await self._reconciler.reconcile_and_get_performance()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("reconcile_sweep_failed")
        finally:
            self.sweeps += 1

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval)
