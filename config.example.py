# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use:
- .env (local, gitignored)
- config_local.py (local safe overrides, gitignored)

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "LIFE_APP_NAME": "App display name (default: life-manager).",
    "LIFE_LOG_LEVEL": "Logging level (default: INFO).",
    # Switches
    "LIFE_CONSOLE_ENABLED": "Enable console REPL (true/false).",
    "LIFE_SYNC_WORKER_ENABLED": "Drain the retry queue in a background thread (true/false).",
    # Identity
    "LIFE_USER_ID": "Local user id owning tokens and tasks (default: 1).",
    "LIFE_DEFAULT_DOMAIN_ID": "Domain for imported tasks (falls back to 'Google Import').",
    # Google OAuth / APIs
    "LIFE_GOOGLE_CLIENT_ID": "OAuth client id (GOOGLE_CLIENT_ID is accepted too).",
    "LIFE_GOOGLE_CLIENT_SECRET": "OAuth client secret (GOOGLE_CLIENT_SECRET is accepted too).",
    "LIFE_GOOGLE_TOKEN_URL": "Token refresh endpoint (default: https://oauth2.googleapis.com/token).",
    "LIFE_GOOGLE_CALENDAR_BASE_URL": "Calendar API base URL.",
    "LIFE_GOOGLE_TASKS_BASE_URL": "Tasks API base URL.",
    "LIFE_HTTP_TIMEOUT_SECONDS": "Per-request HTTP timeout (default: 30).",
    # Paths (gitignored)
    "LIFE_DATA_DIR": "Local data directory (default: .local/life_manager).",
    "LIFE_DB_PATH": "SQLite path for tasks and sync state (default: <data_dir>/life_manager.sqlite3).",
    # Retry executor / queue
    "LIFE_RETRY_MAX_RETRIES": "Inline retries after the first attempt (default: 5).",
    "LIFE_RETRY_BASE_DELAY_SECONDS": "Backoff base delay (default: 1.0).",
    "LIFE_RETRY_MAX_DELAY_SECONDS": "Backoff delay cap (default: 60.0).",
    "LIFE_QUEUE_MAX_RETRIES": "Queued attempts before an entry is marked failed.",
    "LIFE_SYNC_WORKER_INTERVAL_SECONDS": "Seconds between queue drains (default: 60).",
    # Planner
    "LIFE_WORK_DAY_START_HOUR": "Planning window start hour (default: 8).",
    "LIFE_WORK_DAY_END_HOUR": "Planning window end hour (default: 20).",
    "LIFE_PEAK_HOURS": "Comma/space separated high-energy hours.",
    "LIFE_LOW_HOURS": "Comma/space separated low-energy hours.",
    "LIFE_PREFERRED_TASK_MINUTES": "Duration used when a task has no estimate (default: 30).",
    "LIFE_EXPORT_BLOCK_HOUR": "Hour used for calendar blocks of exported tasks (default: 9).",
}
