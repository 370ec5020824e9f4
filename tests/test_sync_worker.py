# tests/test_sync_worker.py

from __future__ import annotations

import asyncio
import threading

import pytest

from life_manager.sync.sync_models import DrainReport
from life_manager.sync.worker import run_sync_worker, start_sync_worker_in_background


class FakeEngine:
    """Counts drains; optionally fails the first one."""

    def __init__(self, *, fail_first: bool = False) -> None:
        self.user_id = 1
        self.drains = 0
        self.fail_first = fail_first

    async def retry_failed_operations(self) -> DrainReport:
        self.drains += 1
        if self.fail_first and self.drains == 1:
            raise RuntimeError("database is locked")
        return DrainReport()


@pytest.mark.asyncio
async def test_worker_drains_every_interval_and_survives_errors() -> None:
    engine = FakeEngine(fail_first=True)

    runner = asyncio.create_task(run_sync_worker(engine, interval_seconds=0.01))

    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert engine.drains >= 2, "worker should keep going after a failed tick"


@pytest.mark.asyncio
async def test_worker_skips_tick_while_drain_lock_is_held() -> None:
    engine = FakeEngine()
    lock = threading.Lock()
    stop = asyncio.Event()
    lock.acquire()

    runner = asyncio.create_task(
        run_sync_worker(engine, interval_seconds=0.01, drain_lock=lock, stop_event=stop)
    )
    await asyncio.sleep(0.05)
    assert engine.drains == 0

    lock.release()
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(runner, timeout=1.0)

    assert engine.drains >= 1
    assert not lock.locked()


def test_background_runner_stops_cleanly() -> None:
    engine = FakeEngine()

    runner = start_sync_worker_in_background(engine, interval_seconds=0.01)
    assert runner is not None

    runner.stop()
    runner.join(timeout=5.0)

    assert not runner.thread.is_alive()
