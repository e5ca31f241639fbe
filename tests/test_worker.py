from __future__ import annotations

import asyncio

import pytest

from backend.workers.reconciliation import ReconciliationWorker


class CountingReconciler:
    def __init__(self, fail_first: bool = False) -> None:
        self.calls = 0
        self.fail_first = fail_first

    async def reconcile_and_get_performance(self, start_time=None, end_time=None):
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise RuntimeError("sweep blew up")
        return []


@pytest.mark.asyncio
async def test_worker_keeps_sweeping_after_a_failure():
    reconciler = CountingReconciler(fail_first=True)
    worker = ReconciliationWorker(reconciler, interval=0.01)

    worker.start()
    for _ in range(100):
        if reconciler.calls >= 3:
            break
        await asyncio.sleep(0.01)
    await worker.stop()

    assert reconciler.calls >= 3
    assert not worker.running


@pytest.mark.asyncio
async def test_zero_interval_disables_the_loop():
    reconciler = CountingReconciler()
    worker = ReconciliationWorker(reconciler, interval=0)

    worker.start()
    await asyncio.sleep(0)

    assert not worker.running
    assert reconciler.calls == 0
    await worker.stop()


@pytest.mark.asyncio
async def test_run_once_counts_sweeps():
    worker = ReconciliationWorker(CountingReconciler(), interval=60)
    await worker.run_once()
    await worker.run_once()
    assert worker.sweeps == 2
