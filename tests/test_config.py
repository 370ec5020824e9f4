# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from life_manager.config import Settings

_GOOGLE_VARS = (
    "LIFE_GOOGLE_CLIENT_ID",
    "LIFE_GOOGLE_CLIENT_SECRET",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _GOOGLE_VARS:
        monkeypatch.delenv(name, raising=False)
    for suffix in ("PEAK_HOURS", "LOW_HOURS", "DATA_DIR", "DB_PATH", "RETRY_MAX_RETRIES", "QUEUE_MAX_RETRIES"):
        monkeypatch.delenv(f"LIFE_{suffix}", raising=False)
    return monkeypatch


def test_defaults_without_google_credentials(clean_env: pytest.MonkeyPatch) -> None:
    s = Settings.from_env()

    assert s.google_configured is False
    assert s.peak_hours == [9, 10, 11, 14, 15, 16]
    assert s.queue_max_retries == s.retry_max_retries


def test_google_configured_accepts_unprefixed_names(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("GOOGLE_CLIENT_ID", "cid")
    clean_env.setenv("GOOGLE_CLIENT_SECRET", "secret")

    assert Settings.from_env().google_configured is True


def test_prefixed_google_names_win(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("GOOGLE_CLIENT_ID", "generic")
    clean_env.setenv("LIFE_GOOGLE_CLIENT_ID", "mine")

    assert Settings.from_env().google_client_id == "mine"


def test_hours_parsing_skips_garbage_and_out_of_range(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("LIFE_PEAK_HOURS", "9, 10 x 25 -1 14")

    assert Settings.from_env().peak_hours == [9, 10, 14]


def test_db_path_follows_data_dir(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clean_env.setenv("LIFE_DATA_DIR", str(tmp_path))

    s = Settings.from_env()

    assert s.data_dir == tmp_path
    assert s.db_path == tmp_path / "life_manager.sqlite3"


def test_bad_numbers_fall_back_to_defaults(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("LIFE_RETRY_MAX_RETRIES", "many")

    assert Settings.from_env().retry_max_retries == 5
