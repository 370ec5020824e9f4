# src/life_manager/sync/exporter.py

from __future__ import annotations

"""
Local -> provider export ("local wins").

The exporter never reads the remote resource before writing it: local fields
always overwrite remote ones. Idempotency comes from the stored remote ids:
- a task that already has a remote id is never created again,
- a partially exported task keeps the id of the half that succeeded.

Failures propagate to the caller. Retryable ones are also queued, unless the call
is itself a queue replay (see SyncContext).
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time as dtime, timedelta, tzinfo
from typing import Any

from ..core.ports import CalendarApi, TaskApi, TokenProvider
from ..tasks.task_models import Task
from ..tasks.task_store import TaskStore
from .errors import (
    ErrorKind,
    ExportError,
    PermanentSyncError,
    SyncEngineError,
    classify_error,
    describe_error,
    status_code_of,
)
from .retry import RetryPolicy, run_with_retry
from .retry_queue import RetryQueue
from .sync_models import (
    LIVE_CONTEXT,
    AuditOperation,
    AuditOutcome,
    CalendarEventInput,
    CredentialHandle,
    EntityType,
    QueueOperation,
    RemoteTaskInput,
    SyncContext,
    SyncStatus,
)
from .sync_store import SyncStore

logger = logging.getLogger(__name__)


class ExportPipeline:
    def __init__(
        self,
        *,
        task_store: TaskStore,
        sync_store: SyncStore,
        tokens: TokenProvider,
        calendar_api: CalendarApi,
        task_api: TaskApi,
        queue: RetryQueue,
        user_id: int,
        policy: RetryPolicy | None = None,
        block_hour: int = 9,
        tz: tzinfo | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._task_store = task_store
        self._sync_store = sync_store
        self._tokens = tokens
        self._calendar = calendar_api
        self._tasks = task_api
        self._queue = queue
        self._user_id = int(user_id)
        self._policy = policy or RetryPolicy()
        self._block_hour = int(block_hour)
        self._tz = tz
        self._sleep = sleep

    # ---- helpers ----

    def _require_task(self, task_id: int) -> Task:
        task = self._task_store.get_task(task_id)
        if task is None:
            raise LookupError(f"task {task_id} not found")
        return task

    def _today(self) -> date:
        return datetime.now(self._tz).date() if self._tz is not None else datetime.now().astimezone().date()

    def time_block_for(self, task: Task) -> tuple[datetime, datetime]:
        """
        Calendar slot for an exported task.

        Fixed tasks keep their own slot; everything else gets
        [due date (or today) at block_hour, + estimated minutes].
        """
        if task.scheduled_start is not None and task.scheduled_end is not None:
            return task.scheduled_start, task.scheduled_end

        day = self._today()
        if task.due_date:
            try:
                day = date.fromisoformat(task.due_date[:10])
            except ValueError:
                logger.warning("Task %s has unparseable due date %r; using today", task.id, task.due_date)

        tz = self._tz or datetime.now().astimezone().tzinfo
        start = datetime.combine(day, dtime(hour=self._block_hour), tzinfo=tz)
        return start, start + timedelta(minutes=max(1, task.estimated_minutes))

    @staticmethod
    def _task_due(task: Task) -> date | None:
        if not task.due_date:
            return None
        try:
            return date.fromisoformat(task.due_date[:10])
        except ValueError:
            return None

    def _event_input(self, task: Task) -> CalendarEventInput:
        start, end = self.time_block_for(task)
        return CalendarEventInput(summary=task.title, description=task.description, start=start, end=end)

    def _task_input(self, task: Task) -> RemoteTaskInput:
        return RemoteTaskInput(title=task.title, notes=task.description, due=self._task_due(task))

    async def _call(self, op: Callable[[], Awaitable[Any]], context: str) -> Any:
        return await run_with_retry(op, context, self._policy, sleep=self._sleep)

    async def _handle(
        self,
        operation: QueueOperation,
        task_id: int,
        ctx: SyncContext,
        payload: dict[str, Any],
    ) -> CredentialHandle:
        try:
            return await self._tokens.get_credential_handle(self._user_id)
        except Exception as exc:
            self._on_failure(operation, task_id, exc, ctx, payload)
            raise

    def _on_failure(
        self,
        operation: QueueOperation,
        task_id: int,
        exc: BaseException,
        ctx: SyncContext,
        payload: dict[str, Any],
    ) -> None:
        kind = classify_error(exc)
        queued = False
        if kind is not ErrorKind.FATAL and not ctx.from_queue:
            self._queue.enqueue(operation, EntityType.TASK, task_id, payload, describe_error(exc))
            queued = True

        logger.warning(
            "Export %s failed task_id=%s kind=%s queued=%s from_queue=%s: %s",
            operation.value,
            task_id,
            kind.value,
            queued,
            ctx.from_queue,
            describe_error(exc),
        )
        self._audit(
            task_id,
            AuditOutcome.FAILURE,
            {
                "operation": operation.value,
                "error": describe_error(exc),
                "kind": kind.value,
                "queued": queued,
                "from_queue": ctx.from_queue,
            },
        )

    def _audit(self, task_id: int, outcome: AuditOutcome, details: dict[str, Any]) -> None:
        self._sync_store.add_audit_entry(
            user_id=self._user_id,
            operation=AuditOperation.EXPORT.value,
            entity_type=EntityType.TASK.value,
            entity_id=str(task_id),
            status=outcome,
            details=details,
        )

    @staticmethod
    def _payload(task_id: int, **data: Any) -> dict[str, Any]:
        return {"task_id": int(task_id), "data": data}

    # ---- operations ----

    async def export_new_task(self, task_id: int, ctx: SyncContext = LIVE_CONTEXT) -> None:
        """
        Create the remote task, then the calendar time block.

        No-op when either remote id is already stored. If the event step fails, the
        remote task id is persisted (status failed) so a retry never creates it twice.
        """
        meta = self._sync_store.get_metadata(task_id)
        if meta is not None and meta.has_remote_id:
            logger.debug("export_new_task: task %s already exported; skipping", task_id)
            return

        task = self._require_task(task_id)
        payload = self._payload(task_id, title=task.title)
        handle = await self._handle(QueueOperation.CREATE, task_id, ctx, payload)

        try:
            remote_task_id = await self._call(
                lambda: self._tasks.create_task(handle, self._task_input(task)),
                f"tasks.create task_id={task_id}",
            )
        except Exception as exc:
            # Nothing was created remotely; nothing to persist.
            self._on_failure(QueueOperation.CREATE, task_id, exc, ctx, payload)
            raise

        try:
            event_id = await self._call(
                lambda: self._calendar.create_event(handle, self._event_input(task)),
                f"calendar.create task_id={task_id}",
            )
        except Exception as exc:
            error = f"calendar event: {describe_error(exc)}"
            if meta is None:
                self._sync_store.create_metadata(
                    task_id,
                    google_task_id=remote_task_id,
                    is_fixed=False,
                    sync_status=SyncStatus.FAILED,
                    sync_error=error,
                    retry_count=1,
                )
            else:
                self._sync_store.mark_failed(task_id, error, google_task_id=remote_task_id)
            self._on_failure(
                QueueOperation.CREATE,
                task_id,
                exc,
                ctx,
                self._payload(task_id, title=task.title, google_task_id=remote_task_id),
            )
            raise

        if meta is None:
            self._sync_store.create_metadata(
                task_id,
                google_task_id=remote_task_id,
                google_event_id=event_id,
                is_fixed=False,
                sync_status=SyncStatus.SYNCED,
                last_sync_time=self._now(),
            )
        else:
            self._sync_store.mark_synced(task_id, google_task_id=remote_task_id, google_event_id=event_id)

        logger.info("Exported task %s -> remote task %s, event %s", task_id, remote_task_id, event_id)
        self._audit(
            task_id,
            AuditOutcome.SUCCESS,
            {
                "operation": QueueOperation.CREATE.value,
                "google_task_id": remote_task_id,
                "google_event_id": event_id,
                "from_queue": ctx.from_queue,
            },
        )

    async def export_task_modification(self, task_id: int, ctx: SyncContext = LIVE_CONTEXT) -> None:
        """Push local fields to every remote side that has a stored id. Never reads remote first."""
        meta = self._sync_store.get_metadata(task_id)
        if meta is None:
            logger.debug("export_task_modification: task %s has no sync metadata; skipping", task_id)
            return
        if not meta.has_remote_id:
            return

        task = self._require_task(task_id)
        payload = self._payload(task_id, title=task.title)
        handle = await self._handle(QueueOperation.UPDATE, task_id, ctx, payload)

        errors: list[tuple[str, Exception]] = []

        if meta.google_task_id:
            remote_id = meta.google_task_id
            try:
                await self._call(
                    lambda: self._tasks.update_task(handle, remote_id, self._task_input(task)),
                    f"tasks.update task_id={task_id}",
                )
            except Exception as exc:
                errors.append(("task", exc))

        if meta.google_event_id:
            event_id = meta.google_event_id
            try:
                await self._call(
                    lambda: self._calendar.update_event(handle, event_id, self._event_input(task)),
                    f"calendar.update task_id={task_id}",
                )
            except Exception as exc:
                errors.append(("event", exc))

        if errors:
            message = "; ".join(f"{side}: {describe_error(exc)}" for side, exc in errors)
            self._sync_store.mark_failed(task_id, message)

            failure: SyncEngineError
            if all(classify_error(exc) is ErrorKind.FATAL for _, exc in errors):
                failure = PermanentSyncError(message)
            else:
                failure = ExportError(message, errors)
            self._on_failure(QueueOperation.UPDATE, task_id, failure, ctx, payload)
            raise failure

        self._sync_store.mark_synced(task_id)
        logger.info("Exported modification of task %s", task_id)
        self._audit(
            task_id,
            AuditOutcome.SUCCESS,
            {"operation": QueueOperation.UPDATE.value, "from_queue": ctx.from_queue},
        )

    async def export_task_completion(self, task_id: int, ctx: SyncContext = LIVE_CONTEXT) -> None:
        """Mark the remote task completed (never deleted). Safe to repeat."""
        meta = self._sync_store.get_metadata(task_id)
        if meta is None or not meta.google_task_id:
            logger.debug("export_task_completion: task %s has no remote task; skipping", task_id)
            return

        remote_id = meta.google_task_id
        payload = self._payload(task_id, google_task_id=remote_id)
        handle = await self._handle(QueueOperation.COMPLETE, task_id, ctx, payload)

        try:
            await self._call(
                lambda: self._tasks.complete_task(handle, remote_id),
                f"tasks.complete task_id={task_id}",
            )
        except Exception as exc:
            self._sync_store.mark_failed(task_id, f"task: {describe_error(exc)}")
            self._on_failure(QueueOperation.COMPLETE, task_id, exc, ctx, payload)
            raise

        self._sync_store.mark_synced(task_id)
        logger.info("Exported completion of task %s", task_id)
        self._audit(
            task_id,
            AuditOutcome.SUCCESS,
            {"operation": QueueOperation.COMPLETE.value, "from_queue": ctx.from_queue},
        )

    async def export_task_deletion(
        self,
        task_id: int,
        ctx: SyncContext = LIVE_CONTEXT,
        *,
        google_event_id: str | None = None,
    ) -> None:
        """
        Remove the exported calendar block of a deleted flexible task.

        The remote task is kept (provider-side history). The event id may be passed
        explicitly because local metadata is gone once the task row is deleted.
        A provider 404 means the event is already gone.
        """
        meta = self._sync_store.get_metadata(task_id)
        if meta is not None and meta.is_fixed:
            logger.debug("export_task_deletion: task %s is calendar-derived; skipping", task_id)
            return

        event_id = google_event_id or (meta.google_event_id if meta is not None else None)
        if not event_id:
            return

        payload = self._payload(task_id, google_event_id=event_id)
        handle = await self._handle(QueueOperation.DELETE, task_id, ctx, payload)

        try:
            await self._call(
                lambda: self._calendar.delete_event(handle, event_id),
                f"calendar.delete task_id={task_id}",
            )
        except PermanentSyncError as exc:
            if exc.__cause__ is None or status_code_of(exc.__cause__) != 404:
                self._on_failure(QueueOperation.DELETE, task_id, exc, ctx, payload)
                raise
            logger.info("Calendar event %s for task %s was already deleted", event_id, task_id)
        except Exception as exc:
            self._on_failure(QueueOperation.DELETE, task_id, exc, ctx, payload)
            raise

        logger.info("Exported deletion of task %s (event %s)", task_id, event_id)
        self._audit(
            task_id,
            AuditOutcome.SUCCESS,
            {
                "operation": QueueOperation.DELETE.value,
                "google_event_id": event_id,
                "from_queue": ctx.from_queue,
            },
        )

    @staticmethod
    def _now() -> float:
        return time.time()
