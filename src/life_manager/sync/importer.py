# src/life_manager/sync/importer.py

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from ..core.ports import CalendarApi, TaskApi, TokenProvider
from ..tasks.task_models import TaskPriority, TaskStatus
from ..tasks.task_store import TaskStore
from .conflicts import detect_event_conflicts, format_clock
from .errors import describe_error
from .retry import RetryPolicy, run_with_retry
from .sync_models import (
    AuditOperation,
    AuditOutcome,
    CalendarEvent,
    EntityType,
    ImportResult,
    RemoteTask,
    SyncError,
    SyncStatus,
)
from .sync_store import SyncStore

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_TASK_MINUTES = 30

LOCATION_PREFIX = "📍 Location: "
ATTENDEES_PREFIX = "👥 Attendees: "
TIME_PREFIX = "🕐 Time: "
_GENERATED_PREFIXES = (LOCATION_PREFIX, ATTENDEES_PREFIX, TIME_PREFIX)


def strip_generated_description(text: str | None) -> str:
    """
    Drop the location/attendees/time paragraphs a previous import added.

    Exported blocks carry the local description back to the calendar, so the
    remote notes may already contain them.
    """
    if not text:
        return ""
    kept = [p for p in text.split("\n\n") if not p.strip().startswith(_GENERATED_PREFIXES)]
    return "\n\n".join(kept).strip()


def build_event_description(event: CalendarEvent) -> str:
    """Local task description for a calendar event: notes, location, attendees, time."""
    parts: list[str] = []
    notes = strip_generated_description(event.description)
    if notes:
        parts.append(notes)
    if event.location:
        parts.append(f"{LOCATION_PREFIX}{event.location}")
    if event.attendees:
        parts.append(f"{ATTENDEES_PREFIX}{', '.join(event.attendees)}")
    parts.append(f"{TIME_PREFIX}{format_clock(event.start)} - {format_clock(event.end)}")
    return "\n\n".join(parts)


def event_duration_minutes(event: CalendarEvent) -> int:
    return max(1, round((event.end - event.start).total_seconds() / 60))


class ImportPipeline:
    """
    Provider -> local import.

    Never raises: credential and batch failures are reported in ImportResult.errors.
    Per-item import is idempotent on the remote id (update if known, create otherwise).
    """

    def __init__(
        self,
        *,
        task_store: TaskStore,
        sync_store: SyncStore,
        tokens: TokenProvider,
        calendar_api: CalendarApi,
        task_api: TaskApi,
        user_id: int,
        default_domain_id: int | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._task_store = task_store
        self._sync_store = sync_store
        self._tokens = tokens
        self._calendar = calendar_api
        self._tasks = task_api
        self._user_id = int(user_id)
        self._default_domain_id = default_domain_id
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    async def import_from_provider(self) -> ImportResult:
        result = ImportResult()

        try:
            handle = await self._tokens.get_credential_handle(self._user_id)
        except Exception as exc:
            logger.warning("Import skipped: no usable credentials (%s)", describe_error(exc))
            result.errors.append(
                SyncError(
                    operation="import",
                    entity_type=EntityType.TASK.value,
                    entity_id="auth",
                    error=describe_error(exc),
                )
            )
            self._audit(EntityType.TASK, "auth", AuditOutcome.FAILURE, {"error": describe_error(exc)})
            return result

        try:
            domain_id = self._task_store.ensure_default_domain(self._default_domain_id)
            await self._import_calendar_batch(handle, domain_id, result)
            await self._import_task_batch(handle, domain_id, result)
        except Exception as exc:
            # Local store trouble: still report instead of raising.
            logger.exception("Import aborted by a local store error")
            result.errors.append(
                SyncError(
                    operation="import",
                    entity_type=EntityType.TASK.value,
                    entity_id="all",
                    error=describe_error(exc),
                )
            )

        logger.info(
            "Import finished events=%s tasks=%s conflicts=%s errors=%s",
            result.calendar_events_imported,
            result.tasks_imported,
            len(result.conflicts),
            len(result.errors),
        )
        return result

    # ---- calendar events ----

    async def _import_calendar_batch(self, handle, domain_id: int, result: ImportResult) -> None:
        try:
            events = await run_with_retry(
                lambda: self._calendar.list_events_for_today(handle),
                "calendar.list_events",
                self._policy,
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.warning("Calendar fetch failed: %s", describe_error(exc))
            result.errors.append(
                SyncError(
                    operation="import",
                    entity_type=EntityType.EVENT.value,
                    entity_id="all",
                    error=describe_error(exc),
                )
            )
            self._audit(EntityType.EVENT, "all", AuditOutcome.FAILURE, {"error": describe_error(exc)})
            return

        # Conflicts are informational: detect over the whole batch, then import everything.
        conflicts = detect_event_conflicts(events)
        for conflict in conflicts:
            logger.info("Calendar conflict: %s", conflict.description)
            self._sync_store.add_audit_entry(
                user_id=self._user_id,
                operation=AuditOperation.CONFLICT.value,
                entity_type=EntityType.EVENT.value,
                entity_id="-".join(conflict.entities),
                status=AuditOutcome.SUCCESS,
                details={
                    "type": conflict.type.value,
                    "entities": list(conflict.entities),
                    "description": conflict.description,
                },
            )
        result.conflicts.extend(conflicts)

        failed = 0
        for event in events:
            try:
                self._import_event(event, domain_id)
                result.calendar_events_imported += 1
            except Exception as exc:
                failed += 1
                logger.warning("Failed to import event %s: %s", event.id, describe_error(exc))
                result.errors.append(
                    SyncError(
                        operation="import",
                        entity_type=EntityType.EVENT.value,
                        entity_id=event.id,
                        error=describe_error(exc),
                    )
                )

        self._audit(
            EntityType.EVENT,
            None,
            AuditOutcome.SUCCESS if failed == 0 else AuditOutcome.FAILURE,
            {
                "count": result.calendar_events_imported,
                "conflicts": len(conflicts),
                "errors": failed,
            },
        )

    def _import_event(self, event: CalendarEvent, domain_id: int) -> int:
        description = build_event_description(event)
        due_date = event.start.date().isoformat()
        minutes = event_duration_minutes(event)

        meta = self._sync_store.find_by_google_event_id(event.id)
        if meta is not None:
            self._task_store.update_task_fields(
                meta.task_id,
                title=event.title,
                description=description,
                due_date=due_date,
                estimated_minutes=minutes,
                scheduled_start=event.start,
                scheduled_end=event.end,
            )
            self._sync_store.mark_synced(meta.task_id)
            logger.debug("Updated task %s from event %s", meta.task_id, event.id)
            return meta.task_id

        task_id = self._task_store.add_task(
            title=event.title,
            description=description,
            domain_id=domain_id,
            priority=TaskPriority.MUST_DO,
            estimated_minutes=minutes,
            due_date=due_date,
            status=TaskStatus.TODO,
            scheduled_start=event.start,
            scheduled_end=event.end,
        )
        try:
            self._sync_store.create_metadata(
                task_id,
                google_event_id=event.id,
                is_fixed=True,
                sync_status=SyncStatus.SYNCED,
                last_sync_time=time.time(),
            )
        except Exception:
            # Without metadata the next import would create a duplicate task.
            self._task_store.delete_task(task_id)
            raise
        logger.debug("Created task %s from event %s", task_id, event.id)
        return task_id

    # ---- remote tasks ----

    async def _import_task_batch(self, handle, domain_id: int, result: ImportResult) -> None:
        try:
            remote_tasks = await run_with_retry(
                lambda: self._tasks.list_tasks_due_today_or_overdue(handle),
                "tasks.list_tasks",
                self._policy,
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.warning("Task fetch failed: %s", describe_error(exc))
            result.errors.append(
                SyncError(
                    operation="import",
                    entity_type=EntityType.TASK.value,
                    entity_id="all",
                    error=describe_error(exc),
                )
            )
            self._audit(EntityType.TASK, "all", AuditOutcome.FAILURE, {"error": describe_error(exc)})
            return

        failed = 0
        for remote in remote_tasks:
            try:
                self._import_remote_task(remote, domain_id)
                result.tasks_imported += 1
            except Exception as exc:
                failed += 1
                logger.warning("Failed to import task %s: %s", remote.id, describe_error(exc))
                result.errors.append(
                    SyncError(
                        operation="import",
                        entity_type=EntityType.TASK.value,
                        entity_id=remote.id,
                        error=describe_error(exc),
                    )
                )

        self._audit(
            EntityType.TASK,
            None,
            AuditOutcome.SUCCESS if failed == 0 else AuditOutcome.FAILURE,
            {"count": result.tasks_imported, "errors": failed},
        )

    def _import_remote_task(self, remote: RemoteTask, domain_id: int) -> int:
        status = TaskStatus.DONE if remote.is_completed else TaskStatus.TODO
        due_date = remote.due.isoformat() if remote.due is not None else None

        meta = self._sync_store.find_by_google_task_id(remote.id)
        if meta is not None:
            self._task_store.update_task_fields(
                meta.task_id,
                title=remote.title,
                description=remote.notes,
                due_date=due_date,
                status=status,
            )
            self._sync_store.mark_synced(meta.task_id)
            logger.debug("Updated task %s from remote task %s", meta.task_id, remote.id)
            return meta.task_id

        task_id = self._task_store.add_task(
            title=remote.title,
            description=remote.notes,
            domain_id=domain_id,
            priority=TaskPriority.SHOULD_DO,
            estimated_minutes=remote.duration_minutes or DEFAULT_REMOTE_TASK_MINUTES,
            due_date=due_date,
            status=status,
        )
        try:
            self._sync_store.create_metadata(
                task_id,
                google_task_id=remote.id,
                is_fixed=False,
                sync_status=SyncStatus.SYNCED,
                last_sync_time=time.time(),
            )
        except Exception:
            self._task_store.delete_task(task_id)
            raise
        logger.debug("Created task %s from remote task %s", task_id, remote.id)
        return task_id

    def _audit(
        self,
        entity_type: EntityType,
        entity_id: str | None,
        outcome: AuditOutcome,
        details: dict,
    ) -> None:
        self._sync_store.add_audit_entry(
            user_id=self._user_id,
            operation=AuditOperation.IMPORT.value,
            entity_type=entity_type.value,
            entity_id=entity_id,
            status=outcome,
            details=details,
        )
