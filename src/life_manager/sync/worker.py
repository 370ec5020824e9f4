# src/life_manager/sync/worker.py

from __future__ import annotations

"""
Background retry-queue worker.

A small polling loop that drains the engine's retry queue every interval.
A failed tick is logged and the loop keeps going; cancel the coroutine to stop.

The CLI runs it in a background thread with its own event loop so the blocking
console REPL can run in parallel.
"""

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

from .engine import SyncEngine

logger = logging.getLogger(__name__)


async def run_sync_worker(
    engine: SyncEngine,
    *,
    interval_seconds: float = 60.0,
    drain_lock: threading.Lock | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """
    Every interval_seconds:
    - skip the tick if another drain holds drain_lock (drains of one user must not overlap)
    - drain due queue entries through the live export path

    Stops when stop_event is set or the coroutine is cancelled.
    """
    sleep_s = max(0.01, float(interval_seconds))
    logger.info("Sync worker started user_id=%s interval=%.1fs", engine.user_id, sleep_s)

    while stop_event is None or not stop_event.is_set():
        acquired = drain_lock.acquire(blocking=False) if drain_lock is not None else True
        if not acquired:
            logger.debug("Sync worker tick skipped: drain already running")
        else:
            try:
                await engine.retry_failed_operations()
            except Exception:
                logger.exception("Sync worker tick failed user_id=%s", engine.user_id)
            finally:
                if drain_lock is not None:
                    drain_lock.release()

        if stop_event is None:
            await asyncio.sleep(sleep_s)
        else:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=sleep_s)

    logger.info("Sync worker stopped user_id=%s", engine.user_id)


@dataclass(slots=True)
class SyncWorkerRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Failed to signal sync worker stop (loop closed).", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_sync_worker_in_background(
    engine: SyncEngine,
    *,
    interval_seconds: float,
    drain_lock: threading.Lock | None = None,
) -> SyncWorkerRunner | None:
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(
                run_sync_worker(
                    engine,
                    interval_seconds=interval_seconds,
                    drain_lock=drain_lock,
                    stop_event=stop_event,
                )
            )
        finally:
            with contextlib.suppress(RuntimeError):
                loop.stop()
            with contextlib.suppress(RuntimeError):
                loop.close()

    t = threading.Thread(target=runner, name="sync-worker", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Sync worker thread did not initialize properly.")
        return None

    logger.info("Sync worker background thread started.")
    return SyncWorkerRunner(thread=t, loop=loop, stop_event=stop_event)
