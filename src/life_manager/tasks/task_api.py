# src/life_manager/tasks/task_api.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from enum import StrEnum

from ..core.state import AppState
from ..planner.time_blocking import (
    EnergyProfile,
    Schedule,
    TimeBlock,
    generate_schedule,
    reschedule_task,
)
from ..sync.errors import describe_error
from ..sync.sync_models import ImportResult
from .task_models import EnergyLevel, Task, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)


class SyncOutcome(StrEnum):
    SYNCED = "synced"
    LOCAL_ONLY = "local_only"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class LocalChange:
    """A local mutation that succeeded, and what happened when it was pushed to Google."""

    task_id: int
    sync: SyncOutcome = SyncOutcome.LOCAL_ONLY

    @property
    def sync_failed(self) -> bool:
        return self.sync is SyncOutcome.FAILED


def sync_enabled(state: AppState) -> bool:
    """Export only when Google is configured and the user has connected an account."""
    if not getattr(state.settings, "google_configured", True):
        return False
    try:
        return state.engine.has_tokens()
    except Exception:
        logger.exception("has_tokens check failed")
        return False


async def _export_quietly(
    state: AppState,
    label: str,
    task_id: int,
    op: Callable[[], Awaitable[None]],
) -> SyncOutcome:
    """
    Run one export after a local mutation.

    The local change already happened and stays: a sync failure is logged (and queued
    by the exporter when retryable), never raised to the caller.
    """
    if not sync_enabled(state):
        logger.debug("Sync disabled; not exporting %s for task %s", label, task_id)
        return SyncOutcome.LOCAL_ONLY
    try:
        await op()
    except Exception as exc:
        logger.warning("Sync %s failed for task %s: %s", label, task_id, describe_error(exc))
        return SyncOutcome.FAILED
    return SyncOutcome.SYNCED


async def create_task_and_export(
    state: AppState,
    *,
    title: str,
    domain_id: int | None = None,
    description: str | None = None,
    priority: TaskPriority = TaskPriority.SHOULD_DO,
    estimated_minutes: int = 30,
    due_date: str | None = None,
    energy_level: EnergyLevel | None = None,
) -> LocalChange:
    if domain_id is None:
        domain_id = state.task_store.ensure_default_domain(getattr(state.settings, "default_domain_id", None))

    task_id = state.task_store.add_task(
        title=title,
        domain_id=domain_id,
        description=description,
        priority=priority,
        estimated_minutes=estimated_minutes,
        due_date=due_date,
        energy_level=energy_level,
    )
    logger.info("Task %s created: %s", task_id, title)
    sync = await _export_quietly(state, "create", task_id, lambda: state.engine.export_new_task(task_id))
    return LocalChange(task_id, sync)


async def update_task_and_export(
    state: AppState,
    task_id: int,
    *,
    title: str | None = None,
    description: str | None = None,
    priority: TaskPriority | None = None,
    estimated_minutes: int | None = None,
    due_date: str | None = None,
    energy_level: EnergyLevel | None = None,
) -> LocalChange | None:
    updated = state.task_store.update_task_fields(
        task_id,
        title=title,
        description=description,
        priority=priority,
        estimated_minutes=estimated_minutes,
        due_date=due_date,
        energy_level=energy_level,
    )
    if not updated:
        return None
    sync = await _export_quietly(state, "update", task_id, lambda: state.engine.export_task_modification(task_id))
    return LocalChange(task_id, sync)


async def complete_task_and_export(state: AppState, task_id: int) -> LocalChange | None:
    if not state.task_store.update_task_fields(task_id, status=TaskStatus.DONE):
        return None
    logger.info("Task %s completed", task_id)
    sync = await _export_quietly(state, "complete", task_id, lambda: state.engine.export_task_completion(task_id))
    return LocalChange(task_id, sync)


async def delete_task_and_export(state: AppState, task_id: int) -> LocalChange | None:
    """
    Delete a flexible task and its exported calendar block.

    Calendar-derived (fixed) tasks cannot be deleted locally: ValueError.
    """
    meta = state.sync_store.get_metadata(task_id)
    if meta is not None and meta.is_fixed:
        raise ValueError(f"task {task_id} comes from a calendar event and cannot be deleted locally")

    event_id = meta.google_event_id if meta is not None else None
    if not state.task_store.delete_task(task_id):
        return None
    logger.info("Task %s deleted", task_id)

    if not event_id:
        return LocalChange(task_id)
    sync = await _export_quietly(
        state,
        "delete",
        task_id,
        lambda: state.engine.export_task_deletion(task_id, google_event_id=event_id),
    )
    return LocalChange(task_id, sync)


def split_fixed_and_flexible(state: AppState, tasks: list[Task], day: date) -> tuple[list[Task], list[Task]]:
    """Fixed = calendar-derived tasks scheduled on `day`; everything else is flexible."""
    fixed: list[Task] = []
    flexible: list[Task] = []
    for task in tasks:
        meta = state.sync_store.get_metadata(task.id)
        if meta is not None and meta.is_fixed:
            if task.scheduled_start is None or task.scheduled_start.date() == day:
                fixed.append(task)
            continue
        flexible.append(task)
    return fixed, flexible


@dataclass(slots=True)
class DayPlan:
    day: date
    import_result: ImportResult | None
    schedule: Schedule


def _today(tz: tzinfo | None) -> date:
    return datetime.now(tz).date() if tz is not None else datetime.now().astimezone().date()


def plan_day(state: AppState, *, day: date | None = None, tz: tzinfo | None = None) -> Schedule:
    settings = state.settings
    day = day or _today(tz)

    tasks = state.task_store.list_open_tasks_for_day(day)
    fixed, flexible = split_fixed_and_flexible(state, tasks, day)

    schedule = generate_schedule(
        fixed,
        flexible,
        EnergyProfile.from_settings(settings),
        day,
        tz=tz,
        work_day_start_hour=int(getattr(settings, "work_day_start_hour", 8)),
        work_day_end_hour=int(getattr(settings, "work_day_end_hour", 20)),
    )
    state.last_schedule = schedule
    return schedule


async def start_day(state: AppState, *, day: date | None = None, tz: tzinfo | None = None) -> DayPlan:
    """Daily start: import from Google (when connected), then plan the day."""
    day = day or _today(tz)
    import_result: ImportResult | None = None
    if sync_enabled(state):
        import_result = await state.engine.import_from_provider()
        for err in import_result.errors:
            logger.warning("Import error %s %s: %s", err.entity_type, err.entity_id, err.error)
    else:
        logger.info("Google sync not connected; planning from local tasks only")

    schedule = plan_day(state, day=day, tz=tz)
    return DayPlan(
        day=day,
        import_result=import_result,
        schedule=schedule,
    )


def reschedule_planned_task(
    state: AppState,
    task_id: int,
    *,
    day: date | None = None,
    tz: tzinfo | None = None,
) -> TimeBlock | None:
    """
    Move one flexible task to its best free slot in the last plan.

    Returns the new block (and updates state.last_schedule) or None when nothing fits.
    """
    settings = state.settings
    task = state.task_store.get_task(task_id)
    if task is None:
        raise LookupError(f"task {task_id} not found")
    meta = state.sync_store.get_metadata(task_id)
    if meta is not None and meta.is_fixed:
        raise ValueError(f"task {task_id} is a calendar event and cannot be moved")

    day = day or _today(tz)
    schedule = state.last_schedule or plan_day(state, day=day, tz=tz)

    block = reschedule_task(
        task,
        schedule,
        EnergyProfile.from_settings(settings),
        day,
        tz=tz,
        work_day_start_hour=int(getattr(settings, "work_day_start_hour", 8)),
        work_day_end_hour=int(getattr(settings, "work_day_end_hour", 20)),
    )
    if block is None:
        return None

    schedule.time_blocks = sorted(
        [b for b in schedule.time_blocks if b.task_id != task_id] + [block],
        key=lambda b: b.start,
    )
    schedule.unscheduled_tasks = [t for t in schedule.unscheduled_tasks if t.id != task_id]
    state.last_schedule = schedule
    logger.info("Task %s rescheduled to %s", task_id, block.start.isoformat())
    return block
