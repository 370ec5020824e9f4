# src/life_manager/cli/commands.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Coroutine
from datetime import date, datetime
from typing import Any, TypeVar

from ..core.state import AppState
from ..planner.time_blocking import Schedule
from ..sync.errors import describe_error
from ..sync.sync_models import SyncStatusReport
from ..tasks.task_api import (
    LocalChange,
    complete_task_and_export,
    create_task_and_export,
    delete_task_and_export,
    plan_day,
    reschedule_planned_task,
    start_day,
    sync_enabled,
    update_task_and_export,
)
from ..tasks.task_models import EnergyLevel, TaskPriority, TaskStatus

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], str]

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /plan, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, emit: CommandEmitter | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return handler(state, args, emit)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _run(coro: Coroutine[Any, Any, T]) -> T:
    # The console runs in the main thread without an event loop of its own.
    return asyncio.run(coro)


def _say(emit: CommandEmitter | None, text: str) -> None:
    if emit:
        with contextlib.suppress(Exception):
            emit(text)


def _with_sync_note(change: LocalChange, reply: str) -> str:
    if change.sync_failed:
        return f"{reply} Saved locally; Google sync failed (see /status)."
    return reply


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _parse_task_id(args: list[str]) -> int | None:
    if not args:
        return None
    try:
        return int(args[0].lstrip("#"))
    except ValueError:
        return None


def _parse_day(args: list[str]) -> date | None:
    """Optional YYYY-MM-DD argument. Raises ValueError on a malformed date."""
    if not args:
        return None
    return date.fromisoformat(args[0])


_OPTION_KEYS = {
    "min": "estimated_minutes",
    "minutes": "estimated_minutes",
    "pri": "priority",
    "priority": "priority",
    "energy": "energy_level",
    "due": "due_date",
    "desc": "description",
}


def _split_options(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Separate `key=value` options (min, pri, energy, due, desc) from free words."""
    words: list[str] = []
    options: dict[str, str] = {}
    for token in args:
        key, sep, value = token.partition("=")
        field_name = _OPTION_KEYS.get(key.lower()) if sep else None
        if field_name is None:
            words.append(token)
            continue
        options[field_name] = value
    return words, options


def _task_fields(options: dict[str, str]) -> dict[str, Any]:
    """Convert raw option strings to typed task fields. Raises ValueError on bad input."""
    fields: dict[str, Any] = {}
    if "estimated_minutes" in options:
        minutes = int(options["estimated_minutes"])
        if minutes <= 0:
            raise ValueError("minutes must be positive")
        fields["estimated_minutes"] = minutes
    if "priority" in options:
        fields["priority"] = TaskPriority(options["priority"].lower())
    if "energy_level" in options:
        fields["energy_level"] = EnergyLevel(options["energy_level"].lower())
    if "due_date" in options:
        fields["due_date"] = date.fromisoformat(options["due_date"]).isoformat()
    if "description" in options:
        fields["description"] = options["description"].replace("_", " ")
    return fields


def format_schedule(state: AppState, schedule: Schedule) -> str:
    lines: list[str] = []
    for block in schedule.time_blocks:
        task = state.task_store.get_task(block.task_id)
        title = task.title if task is not None else "(deleted)"
        kind = " [fixed]" if block.is_fixed else ""
        lines.append(
            f"  {block.start.strftime('%H:%M')}-{block.end.strftime('%H:%M')}  #{block.task_id} {title}{kind}"
        )
    if not lines:
        lines.append("  (nothing scheduled)")

    if schedule.unscheduled_tasks:
        lines.append("Unscheduled:")
        for task in schedule.unscheduled_tasks:
            lines.append(f"  #{task.id} {task.title} ({task.estimated_minutes} min)")

    if schedule.conflicts:
        lines.append("Conflicts:")
        for conflict in schedule.conflicts:
            lines.append(f"  {conflict.description}")
    return "\n".join(lines)


def format_status(report: SyncStatusReport) -> str:
    if report.is_connected:
        connection = "connected"
    elif report.has_tokens:
        connection = f"connection error: {report.connection_error}"
    else:
        connection = report.connection_error or "not connected"

    lines = [
        "Sync status:",
        f"  Google: {connection}",
        f"  Last sync: {_fmt_ts(report.last_sync_time)}",
        f"  Pending operations: {report.pending_operations}",
        f"  Failed tasks: {len(report.failed_operations)}",
    ]
    for failed in report.failed_operations:
        lines.append(f"    #{failed.task_id} (retries={failed.retry_count}) {failed.error}")
    return "\n".join(lines)


# ---- commands ----


def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return format_status(_run(state.engine.get_sync_status()))


def cmd_connect(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /connect <access_token> [refresh_token] [expires_in_seconds]
    """
    if not args:
        return "Usage: /connect <access_token> [refresh_token] [expires_in_seconds]"
    if state.tokens is None:
        return "Token storage is not available."

    refresh_token = args[1] if len(args) > 1 else None
    try:
        expires_in = float(args[2]) if len(args) > 2 else 3600.0
    except ValueError:
        return "expires_in_seconds must be a number."

    state.tokens.store_tokens(
        state.engine.user_id,
        access_token=args[0],
        refresh_token=refresh_token,
        expires_at=time.time() + expires_in,
    )
    return "Google tokens stored."


def cmd_disconnect(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if state.tokens is None:
        return "Token storage is not available."
    state.tokens.delete_tokens(state.engine.user_id)
    return "Google tokens removed."


def cmd_import(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not sync_enabled(state):
        return "Google is not connected. Use /connect first."

    _say(emit, "[SYNC] Importing today's events and tasks from Google...")
    result = _run(state.engine.import_from_provider())

    lines = [
        f"Imported {result.calendar_events_imported} event(s) and {result.tasks_imported} task(s).",
    ]
    for conflict in result.conflicts:
        lines.append(f"  Conflict: {conflict.description}")
    for err in result.errors:
        lines.append(f"  Error ({err.entity_type} {err.entity_id}): {err.error}")
    return "\n".join(lines)


def cmd_plan(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /plan [YYYY-MM-DD]  -> plan from local tasks (no import)
    """
    try:
        day = _parse_day(args)
    except ValueError:
        return "Usage: /plan [YYYY-MM-DD]"
    schedule = plan_day(state, day=day)
    return "Plan:\n" + format_schedule(state, schedule)


def cmd_start(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /start [YYYY-MM-DD]  -> import from Google (when connected), then plan
    """
    try:
        day = _parse_day(args)
    except ValueError:
        return "Usage: /start [YYYY-MM-DD]"

    _say(emit, "[SYNC] Starting the day...")
    plan = _run(start_day(state, day=day))

    lines: list[str] = []
    if plan.import_result is not None:
        result = plan.import_result
        lines.append(
            f"Imported {result.calendar_events_imported} event(s), {result.tasks_imported} task(s), "
            f"{len(result.errors)} error(s)."
        )
        for conflict in result.conflicts:
            lines.append(f"  Calendar conflict: {conflict.description}")
    else:
        lines.append("Google not connected; planning from local tasks.")

    lines.append(f"Plan for {plan.day.isoformat()}:")
    lines.append(format_schedule(state, plan.schedule))
    return "\n".join(lines)


def cmd_reschedule(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    task_id = _parse_task_id(args)
    if task_id is None:
        return "Usage: /reschedule <task_id>"
    try:
        block = reschedule_planned_task(state, task_id)
    except LookupError:
        return f"Task #{task_id} not found."
    except ValueError as exc:
        return str(exc)

    if block is None:
        return f"No free slot fits task #{task_id}."
    return f"Task #{task_id} moved to {block.start.strftime('%H:%M')}-{block.end.strftime('%H:%M')}."


def cmd_retry(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not state.drain_lock.acquire(blocking=False):
        return "A retry run is already in progress."
    try:
        report = _run(state.engine.retry_failed_operations())
    finally:
        state.drain_lock.release()

    if not report.processed:
        return "Nothing to retry."
    return (
        f"Retried {report.processed} operation(s): {report.completed} completed, "
        f"{report.rescheduled} rescheduled, {report.failed} failed."
    )


def cmd_tasks(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /tasks       -> open tasks
    /tasks all   -> every task
    """
    if args and args[0].lower() == "all":
        tasks = state.task_store.list_tasks()
    else:
        tasks = state.task_store.list_tasks(statuses=[TaskStatus.TODO, TaskStatus.IN_PROGRESS])

    if not tasks:
        return "No tasks."

    lines = ["Tasks:"]
    for task in tasks:
        due = f" due {task.due_date}" if task.due_date else ""
        lines.append(
            f"  #{task.id} [{task.status.value}] {task.title} "
            f"({task.priority.value}, {task.energy_level.value}, {task.estimated_minutes} min{due})"
        )
    return "\n".join(lines)


def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /add <title words> [min=N] [pri=must-do|should-do|nice-to-have] [energy=low|medium|high]
         [due=YYYY-MM-DD] [desc=words_with_underscores]
    """
    words, options = _split_options(args)
    if not words:
        return "Usage: /add <title> [min=N] [pri=...] [energy=...] [due=YYYY-MM-DD] [desc=...]"
    try:
        fields = _task_fields(options)
    except ValueError as exc:
        return f"Invalid option: {exc}"

    change = _run(create_task_and_export(state, title=" ".join(words), **fields))
    return _with_sync_note(change, f"Task #{change.task_id} created.")


def cmd_edit(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /edit <task_id> [new title words] [min=N] [pri=...] [energy=...] [due=...] [desc=...]
    """
    task_id = _parse_task_id(args)
    if task_id is None:
        return "Usage: /edit <task_id> [title] [min=N] [pri=...] [energy=...] [due=...] [desc=...]"

    words, options = _split_options(args[1:])
    try:
        fields = _task_fields(options)
    except ValueError as exc:
        return f"Invalid option: {exc}"
    if words:
        fields["title"] = " ".join(words)
    if not fields:
        return "Nothing to change."

    change = _run(update_task_and_export(state, task_id, **fields))
    if change is None:
        return f"Task #{task_id} not found."
    return _with_sync_note(change, f"Task #{task_id} updated.")


def cmd_done(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    task_id = _parse_task_id(args)
    if task_id is None:
        return "Usage: /done <task_id>"
    change = _run(complete_task_and_export(state, task_id))
    if change is None:
        return f"Task #{task_id} not found."
    return _with_sync_note(change, f"Task #{task_id} marked done.")


def cmd_delete(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    task_id = _parse_task_id(args)
    if task_id is None:
        return "Usage: /delete <task_id>"
    try:
        change = _run(delete_task_and_export(state, task_id))
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        logger.exception("Delete failed for task %s", task_id)
        return f"Delete failed: {describe_error(exc)}"
    if change is None:
        return f"Task #{task_id} not found."
    return _with_sync_note(change, f"Task #{task_id} deleted.")


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show Google sync status and queue health.")
registry.register(
    "connect", cmd_connect, help_text="Store Google tokens: /connect <access> [refresh] [expires_in]."
)
registry.register("disconnect", cmd_disconnect, help_text="Remove stored Google tokens.")
registry.register("import", cmd_import, help_text="Import today's calendar events and due tasks.")
registry.register("plan", cmd_plan, help_text="Plan a day from local tasks: /plan [YYYY-MM-DD].")
registry.register("start", cmd_start, help_text="Import, then plan the day: /start [YYYY-MM-DD].")
registry.register("reschedule", cmd_reschedule, help_text="Move a task to its next best slot.")
registry.register("retry", cmd_retry, help_text="Retry queued sync operations now.")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks | /tasks all.", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task: /add <title> [min=N] [pri=...] [energy=...].")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <id> [title] [key=value ...].")
registry.register("done", cmd_done, help_text="Mark a task done: /done <id>.")
registry.register("delete", cmd_delete, help_text="Delete a flexible task: /delete <id>.", aliases=["rm"])
