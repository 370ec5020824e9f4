# src/life_manager/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations (SQLite stores, Google clients, token manager)
  into the sync engine and AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..google.calendar_client import GoogleCalendarClient
from ..google.oauth import TokenManager
from ..google.tasks_client import GoogleTasksClient
from ..sync.engine import SyncEngine
from ..sync.sync_store import SyncStore
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    # TaskStore first: the sync tables reference tasks(id).
    task_store = TaskStore(settings.db_path)
    sync_store = SyncStore(settings.db_path)

    tokens = TokenManager(
        settings.db_path,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        token_url=settings.google_token_url,
        timeout=settings.http_timeout_seconds,
    )
    if not settings.google_configured:
        logger.info("Google OAuth client not configured; sync features are disabled.")

    engine = SyncEngine.from_settings(
        settings,
        task_store=task_store,
        sync_store=sync_store,
        tokens=tokens,
        calendar_api=GoogleCalendarClient(
            base_url=settings.google_calendar_base_url,
            timeout=settings.http_timeout_seconds,
        ),
        task_api=GoogleTasksClient(
            base_url=settings.google_tasks_base_url,
            timeout=settings.http_timeout_seconds,
        ),
    )

    return AppState(
        settings=settings,
        task_store=task_store,
        sync_store=sync_store,
        engine=engine,
        tokens=tokens,
    )
