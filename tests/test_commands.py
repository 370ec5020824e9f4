# tests/test_commands.py

from __future__ import annotations

import httpx

from life_manager.cli.commands import CommandRegistry, registry
from life_manager.tasks.task_models import EnergyLevel, TaskPriority


def test_command_registry_routes_and_passes_emit(state) -> None:
    reg = CommandRegistry()
    seen: list[tuple[list[str], str]] = []

    def handler(state, args, emit):
        if emit is not None:
            emit("note")
        seen.append((args, "called"))
        return "ok"

    notes: list[str] = []
    reg.register("a", handler, "a", aliases=["alpha"])

    assert reg.handle(state, "/a x y", emit=notes.append) == "ok"
    assert reg.handle(state, "/ALPHA") == "ok"
    assert seen == [(["x", "y"], "called"), ([], "called")]
    assert notes == ["note"]


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_help_lists_commands(state) -> None:
    text = registry.handle(state, "/help") or ""
    for name in ("/plan", "/start", "/retry", "/status", "/add", "/reschedule"):
        assert name in text


def test_add_parses_options_and_lists_task(state, tokens) -> None:
    tokens.connected = False

    reply = registry.handle(state, "/add Write quarterly report min=90 pri=must-do energy=high due=2025-01-15")

    assert reply == "Task #1 created."
    task = state.task_store.get_task(1)
    assert task is not None
    assert task.title == "Write quarterly report"
    assert task.estimated_minutes == 90
    assert task.priority is TaskPriority.MUST_DO
    assert task.energy_level is EnergyLevel.HIGH
    assert task.due_date == "2025-01-15"

    listing = registry.handle(state, "/tasks") or ""
    assert "#1 [todo] Write quarterly report (must-do, high, 90 min due 2025-01-15)" in listing


def test_add_rejects_bad_options(state) -> None:
    assert (registry.handle(state, "/add Thing pri=urgent") or "").startswith("Invalid option")
    assert (registry.handle(state, "/add Thing min=-5") or "").startswith("Invalid option")
    assert (registry.handle(state, "/add min=5") or "").startswith("Usage")


def test_edit_done_delete_flow(state, tokens) -> None:
    tokens.connected = False
    registry.handle(state, "/add Stretch min=15")

    assert registry.handle(state, "/edit 1 Long stretch min=20") == "Task #1 updated."
    task = state.task_store.get_task(1)
    assert task is not None and (task.title, task.estimated_minutes) == ("Long stretch", 20)

    assert registry.handle(state, "/done 1") == "Task #1 marked done."
    assert registry.handle(state, "/tasks") == "No tasks."
    assert registry.handle(state, "/delete 1") == "Task #1 deleted."
    assert registry.handle(state, "/delete 1") == "Task #1 not found."
    assert registry.handle(state, "/done x") == "Usage: /done <task_id>"


def test_plan_shows_blocks_and_rejects_bad_dates(state, tokens) -> None:
    tokens.connected = False
    registry.handle(state, "/add Stretch min=15 due=2025-01-15")

    reply = registry.handle(state, "/plan 2025-01-15") or ""
    assert reply.startswith("Plan:")
    assert "08:00-08:15  #1 Stretch" in reply

    assert registry.handle(state, "/plan tomorrow") == "Usage: /plan [YYYY-MM-DD]"


def test_status_and_retry(state) -> None:
    status = registry.handle(state, "/status") or ""
    assert "Google: connected" in status
    assert "Pending operations: 0" in status

    assert registry.handle(state, "/retry") == "Nothing to retry."


def test_retry_refuses_to_overlap_a_running_drain(state) -> None:
    state.drain_lock.acquire()
    try:
        assert registry.handle(state, "/retry") == "A retry run is already in progress."
    finally:
        state.drain_lock.release()


def test_connect_without_token_storage(state) -> None:
    assert registry.handle(state, "/connect abc") == "Token storage is not available."
    assert (registry.handle(state, "/connect") or "").startswith("Usage")


def test_mutations_report_failed_google_sync(state, remote_tasks) -> None:
    remote_tasks.fail_always("create_task", httpx.ConnectError("connection refused"))

    reply = registry.handle(state, "/add Write report min=30")

    assert reply == "Task #1 created. Saved locally; Google sync failed (see /status)."
    assert state.task_store.get_task(1) is not None

    # Never exported, so there is nothing to push for a completion.
    assert registry.handle(state, "/done 1") == "Task #1 marked done."
