# src/life_manager/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time (Google credentials are optional until sync is used).
- Legacy-style module-level constants are exported for quick scripts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "LIFE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    # Never override variables already present in the real environment.
    load_dotenv(override=False)


_load_dotenv()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_hours(name: str, default: List[int]) -> List[int]:
    """Comma/space separated hours of day, e.g. "9,10,11 14"."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    out: List[int] = []
    for part in raw.replace(",", " ").split():
        try:
            hour = int(part)
        except ValueError:
            continue
        if 0 <= hour <= 23:
            out.append(hour)
    return out


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connector / worker flags ----
    console_enabled: bool
    sync_worker_enabled: bool

    # ---- Identity (single-user app) ----
    user_id: int
    default_domain_id: int

    # ---- Google OAuth / APIs ----
    google_client_id: Optional[str]
    google_client_secret: Optional[str]
    google_token_url: str
    google_calendar_base_url: str
    google_tasks_base_url: str
    http_timeout_seconds: float

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Retry executor / queue ----
    retry_max_retries: int
    retry_base_delay_seconds: float
    retry_max_delay_seconds: float
    queue_max_retries: int
    sync_worker_interval_seconds: float

    # ---- Planner ----
    work_day_start_hour: int
    work_day_end_hour: int
    peak_hours: List[int]
    low_hours: List[int]
    preferred_task_minutes: int
    export_block_hour: int

    @property
    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="life-manager") or "life-manager"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        sync_worker_enabled = _env_bool(_k("SYNC_WORKER_ENABLED"), True)

        user_id = _env_int(_k("USER_ID"), 1)
        default_domain_id = _env_int(_k("DEFAULT_DOMAIN_ID"), 1)

        google_client_id = _first_env(_k("GOOGLE_CLIENT_ID"), "GOOGLE_CLIENT_ID", default=None)
        google_client_secret = _first_env(_k("GOOGLE_CLIENT_SECRET"), "GOOGLE_CLIENT_SECRET", default=None)
        google_token_url = _env(_k("GOOGLE_TOKEN_URL"), "https://oauth2.googleapis.com/token")
        google_calendar_base_url = _env(
            _k("GOOGLE_CALENDAR_BASE_URL"), "https://www.googleapis.com/calendar/v3"
        )
        google_tasks_base_url = _env(_k("GOOGLE_TASKS_BASE_URL"), "https://tasks.googleapis.com/tasks/v1")
        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 30.0)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/life_manager"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "life_manager.sqlite3")

        retry_max_retries = _env_int(_k("RETRY_MAX_RETRIES"), 5)
        retry_base_delay_seconds = _env_float(_k("RETRY_BASE_DELAY_SECONDS"), 1.0)
        retry_max_delay_seconds = _env_float(_k("RETRY_MAX_DELAY_SECONDS"), 60.0)
        # Queue ceiling defaults to the executor's retry count.
        queue_max_retries = _env_int(_k("QUEUE_MAX_RETRIES"), retry_max_retries)
        sync_worker_interval_seconds = _env_float(_k("SYNC_WORKER_INTERVAL_SECONDS"), 60.0)

        work_day_start_hour = _env_int(_k("WORK_DAY_START_HOUR"), 8)
        work_day_end_hour = _env_int(_k("WORK_DAY_END_HOUR"), 20)
        peak_hours = _env_hours(_k("PEAK_HOURS"), [9, 10, 11, 14, 15, 16])
        low_hours = _env_hours(_k("LOW_HOURS"), [13, 17, 18, 19])
        preferred_task_minutes = _env_int(_k("PREFERRED_TASK_MINUTES"), 30)
        export_block_hour = _env_int(_k("EXPORT_BLOCK_HOUR"), 9)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            sync_worker_enabled=sync_worker_enabled,
            user_id=user_id,
            default_domain_id=default_domain_id,
            google_client_id=google_client_id,
            google_client_secret=google_client_secret,
            google_token_url=google_token_url,
            google_calendar_base_url=google_calendar_base_url,
            google_tasks_base_url=google_tasks_base_url,
            http_timeout_seconds=http_timeout_seconds,
            data_dir=data_dir,
            db_path=db_path,
            retry_max_retries=retry_max_retries,
            retry_base_delay_seconds=retry_base_delay_seconds,
            retry_max_delay_seconds=retry_max_delay_seconds,
            queue_max_retries=queue_max_retries,
            sync_worker_interval_seconds=sync_worker_interval_seconds,
            work_day_start_hour=work_day_start_hour,
            work_day_end_hour=work_day_end_hour,
            peak_hours=peak_hours,
            low_hours=low_hours,
            preferred_task_minutes=preferred_task_minutes,
            export_block_hour=export_block_hour,
        )


SETTINGS = Settings.from_env()

# ---- Optional local overrides (never committed) ----
# Prefer .env for secrets; use config_local.py only for safe overrides.
try:
    import config_local as _config_local  # type: ignore
except ImportError:
    _config_local = None

if _config_local is not None:
    if hasattr(_config_local, "CONSOLE_ENABLED"):
        object.__setattr__(SETTINGS, "console_enabled", bool(_config_local.CONSOLE_ENABLED))  # type: ignore[misc]
    if hasattr(_config_local, "SYNC_WORKER_ENABLED"):
        object.__setattr__(SETTINGS, "sync_worker_enabled", bool(_config_local.SYNC_WORKER_ENABLED))  # type: ignore[misc]


def get_settings() -> Settings:
    return SETTINGS


# --------------------------------------------------------------------------------------
# Module-level constants (read-only snapshot of SETTINGS).
# --------------------------------------------------------------------------------------

APP_NAME = SETTINGS.app_name
LOG_LEVEL = SETTINGS.log_level

DATA_DIR = SETTINGS.data_dir
DB_PATH = SETTINGS.db_path

RETRY_MAX_RETRIES = SETTINGS.retry_max_retries
RETRY_BASE_DELAY_SECONDS = SETTINGS.retry_base_delay_seconds
RETRY_MAX_DELAY_SECONDS = SETTINGS.retry_max_delay_seconds

WORK_DAY_START_HOUR = SETTINGS.work_day_start_hour
WORK_DAY_END_HOUR = SETTINGS.work_day_end_hour
PEAK_HOURS = SETTINGS.peak_hours
LOW_HOURS = SETTINGS.low_hours
