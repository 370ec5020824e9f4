# src/life_manager/sync/engine.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import tzinfo

from ..core.ports import CalendarApi, TaskApi, TokenProvider
from ..tasks.task_store import TaskStore
from .errors import PermanentSyncError
from .exporter import ExportPipeline
from .importer import ImportPipeline
from .retry import RetryPolicy
from .retry_queue import RetryQueue
from .status import get_sync_status
from .sync_models import (
    LIVE_CONTEXT,
    DrainReport,
    ImportResult,
    QueueEntry,
    QueueOperation,
    SyncContext,
    SyncStatusReport,
)
from .sync_store import SyncStore

logger = logging.getLogger(__name__)


class SyncEngine:
    """
    Per-user facade over import, export, the retry queue and status reporting.

    Holds no mutable sync state of its own: every call re-reads the stores, and the
    queue/live distinction travels as a SyncContext argument.
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
        queue_max_retries: int | None = None,
        block_hour: int = 9,
        tz: tzinfo | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.user_id = int(user_id)
        self._tokens = tokens
        self._sync_store = sync_store
        self.policy = policy or RetryPolicy()

        self.queue = RetryQueue(
            sync_store,
            user_id=self.user_id,
            max_retries=queue_max_retries if queue_max_retries is not None else self.policy.retries,
            base_delay=self.policy.base_delay,
            max_delay=self.policy.max_delay,
        )
        self.importer = ImportPipeline(
            task_store=task_store,
            sync_store=sync_store,
            tokens=tokens,
            calendar_api=calendar_api,
            task_api=task_api,
            user_id=self.user_id,
            default_domain_id=default_domain_id,
            policy=self.policy,
            sleep=sleep,
        )
        self.exporter = ExportPipeline(
            task_store=task_store,
            sync_store=sync_store,
            tokens=tokens,
            calendar_api=calendar_api,
            task_api=task_api,
            queue=self.queue,
            user_id=self.user_id,
            policy=self.policy,
            block_hour=block_hour,
            tz=tz,
            sleep=sleep,
        )

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        task_store: TaskStore,
        sync_store: SyncStore,
        tokens: TokenProvider,
        calendar_api: CalendarApi,
        task_api: TaskApi,
    ) -> SyncEngine:
        return cls(
            task_store=task_store,
            sync_store=sync_store,
            tokens=tokens,
            calendar_api=calendar_api,
            task_api=task_api,
            user_id=int(getattr(settings, "user_id", 1)),
            default_domain_id=getattr(settings, "default_domain_id", None),
            policy=RetryPolicy.from_settings(settings),
            queue_max_retries=getattr(settings, "queue_max_retries", None),
            block_hour=int(getattr(settings, "export_block_hour", 9)),
        )

    def has_tokens(self) -> bool:
        return bool(self._tokens.has_tokens(self.user_id))

    # ---- import ----

    async def import_from_provider(self) -> ImportResult:
        return await self.importer.import_from_provider()

    # ---- export ----

    async def export_new_task(self, task_id: int, ctx: SyncContext = LIVE_CONTEXT) -> None:
        await self.exporter.export_new_task(task_id, ctx)

    async def export_task_modification(self, task_id: int, ctx: SyncContext = LIVE_CONTEXT) -> None:
        await self.exporter.export_task_modification(task_id, ctx)

    async def export_task_completion(self, task_id: int, ctx: SyncContext = LIVE_CONTEXT) -> None:
        await self.exporter.export_task_completion(task_id, ctx)

    async def export_task_deletion(
        self,
        task_id: int,
        ctx: SyncContext = LIVE_CONTEXT,
        *,
        google_event_id: str | None = None,
    ) -> None:
        await self.exporter.export_task_deletion(task_id, ctx, google_event_id=google_event_id)

    # ---- retry queue ----

    async def replay_queue_entry(self, entry: QueueEntry, ctx: SyncContext) -> None:
        """Route a queue entry back through the live export path."""
        data = entry.payload.get("data") or {}
        try:
            task_id = int(entry.payload.get("task_id", entry.entity_id))
        except (TypeError, ValueError) as exc:
            raise PermanentSyncError(f"queue entry {entry.id} has no usable task id") from exc

        try:
            if entry.operation is QueueOperation.CREATE:
                await self.exporter.export_new_task(task_id, ctx)
            elif entry.operation is QueueOperation.UPDATE:
                await self.exporter.export_task_modification(task_id, ctx)
            elif entry.operation is QueueOperation.COMPLETE:
                await self.exporter.export_task_completion(task_id, ctx)
            elif entry.operation is QueueOperation.DELETE:
                await self.exporter.export_task_deletion(
                    task_id, ctx, google_event_id=data.get("google_event_id")
                )
            else:
                raise PermanentSyncError(f"unsupported queue operation {entry.operation!r}")
        except LookupError as exc:
            # The local task was deleted after the entry was queued.
            raise PermanentSyncError(str(exc)) from exc

    async def retry_failed_operations(self, *, now_ts: float | None = None) -> DrainReport:
        report = await self.queue.drain(self.replay_queue_entry, now_ts=now_ts)
        if report.processed:
            logger.info(
                "Retry drain user_id=%s processed=%s completed=%s rescheduled=%s failed=%s",
                self.user_id,
                report.processed,
                report.completed,
                report.rescheduled,
                report.failed,
            )
        return report

    # ---- status ----

    async def get_sync_status(self) -> SyncStatusReport:
        return await get_sync_status(self._tokens, self._sync_store, self.user_id)
