# src/life_manager/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..google.oauth import TokenManager
    from ..planner.time_blocking import Schedule
    from ..sync.engine import SyncEngine
    from ..sync.sync_store import SyncStore
    from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings object (config.Settings or a test double with the same attributes).
    settings: Any

    task_store: TaskStore
    sync_store: SyncStore
    engine: SyncEngine

    # Token manager (store/delete tokens from the console). None in tests that do not need it.
    tokens: TokenManager | None = None

    # Serializes retry-queue drains between the background worker and /retry.
    drain_lock: threading.Lock = field(default_factory=threading.Lock)

    # Last plan produced by /plan or start_day (kept for /reschedule).
    last_schedule: Schedule | None = None
