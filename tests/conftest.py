# tests/conftest.py

from __future__ import annotations

from datetime import timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from life_manager.core.state import AppState
from life_manager.sync.engine import SyncEngine
from life_manager.sync.retry import RetryPolicy
from life_manager.sync.sync_store import SyncStore
from life_manager.tasks.task_store import TaskStore

from .fakes import FakeCalendarApi, FakeTaskApi, FakeTokenProvider, no_sleep


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the sync engine.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        # Paths (tmp per test run)
        data_dir=tmp_path,
        db_path=tmp_path / "life_manager.sqlite3",
        # Identity
        user_id=1,
        default_domain_id=None,
        google_configured=True,
        # Retry tuning (small numbers keep tests fast)
        retry_max_retries=2,
        retry_base_delay_seconds=1.0,
        retry_max_delay_seconds=60.0,
        queue_max_retries=3,
        # Planner
        work_day_start_hour=8,
        work_day_end_hour=20,
        peak_hours=(9, 10, 11, 14, 15, 16),
        low_hours=(13, 17, 18, 19),
        preferred_task_minutes=30,
        export_block_hour=9,
    )


@pytest.fixture()
def task_store(settings: SimpleNamespace) -> TaskStore:
    # Created before SyncStore: sync tables reference tasks(id).
    return TaskStore(settings.db_path)


@pytest.fixture()
def sync_store(settings: SimpleNamespace, task_store: TaskStore) -> SyncStore:
    return SyncStore(settings.db_path)


@pytest.fixture()
def tokens() -> FakeTokenProvider:
    return FakeTokenProvider()


@pytest.fixture()
def calendar() -> FakeCalendarApi:
    return FakeCalendarApi()


@pytest.fixture()
def remote_tasks() -> FakeTaskApi:
    return FakeTaskApi()


@pytest.fixture()
def engine(
    settings: SimpleNamespace,
    task_store: TaskStore,
    sync_store: SyncStore,
    tokens: FakeTokenProvider,
    calendar: FakeCalendarApi,
    remote_tasks: FakeTaskApi,
) -> SyncEngine:
    return SyncEngine(
        task_store=task_store,
        sync_store=sync_store,
        tokens=tokens,
        calendar_api=calendar,
        task_api=remote_tasks,
        user_id=settings.user_id,
        policy=RetryPolicy.from_settings(settings),
        queue_max_retries=settings.queue_max_retries,
        block_hour=settings.export_block_hour,
        tz=timezone.utc,
        sleep=no_sleep,
    )


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    task_store: TaskStore,
    sync_store: SyncStore,
    engine: SyncEngine,
) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep real SQLite stores here because their correctness is part of
    what we want to test.
    """
    return AppState(
        settings=settings,
        task_store=task_store,
        sync_store=sync_store,
        engine=engine,
    )


@pytest.fixture()
def domain_id(task_store: TaskStore) -> int:
    return task_store.add_domain("Work")
