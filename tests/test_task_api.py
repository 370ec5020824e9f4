# tests/test_task_api.py

from __future__ import annotations

from datetime import date, datetime, timezone

import httpx
import pytest

from life_manager.sync.sync_models import CalendarEvent, QueueStatus, RemoteTask, SyncStatus
from life_manager.tasks.task_api import (
    SyncOutcome,
    complete_task_and_export,
    create_task_and_export,
    delete_task_and_export,
    plan_day,
    reschedule_planned_task,
    start_day,
    update_task_and_export,
)
from life_manager.tasks.task_models import EnergyLevel, TaskPriority, TaskStatus

UTC = timezone.utc
DAY = date(2025, 1, 15)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 15, hour, minute, tzinfo=UTC)


@pytest.mark.asyncio
async def test_create_exports_when_connected(state, sync_store, remote_tasks, calendar) -> None:
    change = await create_task_and_export(state, title="Write report", estimated_minutes=60, due_date="2025-01-15")
    task_id = change.task_id

    assert change.sync is SyncOutcome.SYNCED

    meta = sync_store.get_metadata(task_id)
    assert meta is not None and meta.sync_status is SyncStatus.SYNCED
    assert list(remote_tasks.created) == ["rt-1"]
    assert list(calendar.created) == ["evt-1"]


@pytest.mark.asyncio
async def test_create_stays_local_when_not_connected(state, sync_store, tokens, remote_tasks) -> None:
    tokens.connected = False

    change = await create_task_and_export(state, title="Write report")
    task_id = change.task_id

    assert change.sync is SyncOutcome.LOCAL_ONLY
    assert state.task_store.get_task(task_id) is not None
    assert sync_store.get_metadata(task_id) is None
    assert remote_tasks.calls == []
    assert sync_store.list_queue_entries(state.engine.user_id) == []


@pytest.mark.asyncio
async def test_create_stays_local_when_google_is_not_configured(state, settings, remote_tasks) -> None:
    settings.google_configured = False

    await create_task_and_export(state, title="Write report")

    assert remote_tasks.calls == []


@pytest.mark.asyncio
async def test_failed_export_keeps_local_task_and_queues(state, sync_store, remote_tasks) -> None:
    remote_tasks.fail_always("create_task", httpx.ConnectError("connection refused"))

    change = await create_task_and_export(state, title="Write report")

    assert change.sync_failed
    assert state.task_store.get_task(change.task_id) is not None
    assert sync_store.count_queue_entries(state.engine.user_id, QueueStatus.PENDING) == 1


@pytest.mark.asyncio
async def test_update_and_complete_push_to_google(state, remote_tasks) -> None:
    task_id = (await create_task_and_export(state, title="Write report")).task_id

    updated = await update_task_and_export(state, task_id, title="Write Q1 report", priority=TaskPriority.MUST_DO)
    assert updated is not None and updated.sync is SyncOutcome.SYNCED
    assert remote_tasks.updated[-1][1].title == "Write Q1 report"

    completed = await complete_task_and_export(state, task_id)
    assert completed is not None and completed.sync is SyncOutcome.SYNCED
    task = state.task_store.get_task(task_id)
    assert task is not None and task.status is TaskStatus.DONE
    assert remote_tasks.completed == ["rt-1"]

    assert await update_task_and_export(state, 9999, title="ghost") is None
    assert await complete_task_and_export(state, 9999) is None


@pytest.mark.asyncio
async def test_delete_removes_task_and_calendar_block(state, sync_store, calendar) -> None:
    task_id = (await create_task_and_export(state, title="Write report")).task_id

    deleted = await delete_task_and_export(state, task_id)
    assert deleted is not None and deleted.sync is SyncOutcome.SYNCED

    assert state.task_store.get_task(task_id) is None
    assert sync_store.get_metadata(task_id) is None
    assert calendar.deleted == ["evt-1"]


@pytest.mark.asyncio
async def test_calendar_tasks_cannot_be_deleted(state, calendar) -> None:
    calendar.events = [CalendarEvent(id="e1", title="Standup", start=_at(9), end=_at(9, 30))]
    await state.engine.import_from_provider()
    meta = state.sync_store.find_by_google_event_id("e1")
    assert meta is not None

    with pytest.raises(ValueError):
        await delete_task_and_export(state, meta.task_id)

    assert state.task_store.get_task(meta.task_id) is not None


@pytest.mark.asyncio
async def test_start_day_imports_then_plans(state, calendar, remote_tasks) -> None:
    calendar.events = [CalendarEvent(id="e1", title="Standup", start=_at(9), end=_at(10))]
    remote_tasks.tasks = [
        RemoteTask(id="t1", title="Pay invoice", status="needsAction", due=date(2025, 1, 14)),
        RemoteTask(id="t2", title="Old news", status="completed", due=date(2025, 1, 14)),
    ]

    plan = await start_day(state, day=DAY, tz=UTC)

    assert plan.import_result is not None
    assert plan.import_result.calendar_events_imported == 1
    assert state.last_schedule is plan.schedule

    titles = {
        block.is_fixed: state.task_store.get_task(block.task_id).title  # type: ignore[union-attr]
        for block in plan.schedule.time_blocks
    }
    assert titles == {True: "Standup", False: "Pay invoice"}
    flexible = next(b for b in plan.schedule.time_blocks if not b.is_fixed)
    assert flexible.start == _at(8)


@pytest.mark.asyncio
async def test_start_day_without_google_plans_local_tasks(state, tokens, calendar) -> None:
    tokens.connected = False
    await create_task_and_export(state, title="Stretch", estimated_minutes=15, energy_level=EnergyLevel.LOW)

    plan = await start_day(state, day=DAY, tz=UTC)

    assert plan.import_result is None
    assert calendar.calls == []
    assert len(plan.schedule.time_blocks) == 1


@pytest.mark.asyncio
async def test_reschedule_updates_last_plan(state, tokens) -> None:
    tokens.connected = False
    created = await create_task_and_export(state, title="Focus", estimated_minutes=60, energy_level=EnergyLevel.HIGH)
    focus = created.task_id
    schedule = plan_day(state, day=DAY, tz=UTC)
    assert schedule.time_blocks[0].start == _at(8)

    block = reschedule_planned_task(state, focus, day=DAY, tz=UTC)

    assert block is not None
    assert state.last_schedule is not None
    assert [b.task_id for b in state.last_schedule.time_blocks] == [focus]

    with pytest.raises(LookupError):
        reschedule_planned_task(state, 9999, day=DAY, tz=UTC)
