# src/life_manager/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the retry-queue sync worker in a background thread (optional),
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import contextlib
import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import level_from_name, setup_logging
from ..sync.worker import SyncWorkerRunner, start_sync_worker_in_background

logger = logging.getLogger(__name__)

WORKER_JOIN_TIMEOUT_SECONDS = 10.0


def _close_stores(state: AppState) -> None:
    for store in (state.task_store, state.sync_store, state.tokens):
        close = getattr(store, "close", None)
        if close is None:
            continue
        try:
            close()
        except Exception:
            logger.debug("Closing %s failed.", type(store).__name__, exc_info=True)


def _start_worker(state: AppState) -> SyncWorkerRunner | None:
    settings = state.settings
    if not settings.sync_worker_enabled:
        logger.info("Sync worker disabled; queued operations run only on /retry.")
        return None
    if not settings.google_configured:
        logger.info("Google credentials not configured; sync worker not started.")
        return None
    return start_sync_worker_in_background(
        state.engine,
        interval_seconds=settings.sync_worker_interval_seconds,
        drain_lock=state.drain_lock,
    )


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(log_dir=settings.data_dir, console_level=level_from_name(settings.log_level))
    logger.info("Starting %s (log file: %s)...", settings.app_name, log_file)

    state = create_initial_state(settings=settings)
    worker = _start_worker(state)

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    # The REPL handles Ctrl+C itself; SIGTERM may be missing on some platforms.
    with contextlib.suppress(ValueError, OSError, AttributeError):
        signal.signal(signal.SIGTERM, _handle_signal)
        if not settings.console_enabled:
            signal.signal(signal.SIGINT, _handle_signal)

    try:
        if settings.console_enabled:
            run_console_loop(state)
        elif worker is None:
            logger.warning("Console and sync worker are both disabled; nothing to run.")
        else:
            logger.info("Console disabled. Running the sync worker only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        if worker is not None:
            worker.stop()
            worker.join(timeout=WORKER_JOIN_TIMEOUT_SECONDS)
        _close_stores(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
