# src/life_manager/sync/retry_queue.py

from __future__ import annotations

"""
Durable retry queue.

State machine per entry:
    pending -> processing -> completed
                          -> pending (retry_count + 1, next_retry_at pushed out)
                          -> failed  (retry_count >= max_retries, or a permanent error)

Drains for the same user must be serialized by the caller (one worker per user
or an external lock).
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .errors import PermanentSyncError, classify_error, describe_error
from .retry import backoff_delay
from .sync_models import (
    AuditOperation,
    AuditOutcome,
    DrainReport,
    EntityType,
    QueueEntry,
    QueueOperation,
    QueueStatus,
    SyncContext,
)
from .sync_store import SyncStore

logger = logging.getLogger(__name__)

ReplayFn = Callable[[QueueEntry, SyncContext], Awaitable[None]]


class RetryQueue:
    def __init__(
        self,
        store: SyncStore,
        *,
        user_id: int,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        batch_limit: int = 100,
    ) -> None:
        self._store = store
        self._user_id = int(user_id)
        self._max_retries = max(1, int(max_retries))
        self._base_delay = float(base_delay)
        self._max_delay = float(max_delay)
        self._batch_limit = int(batch_limit)

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def backoff(self, retry_count: int) -> float:
        return backoff_delay(retry_count, base_delay=self._base_delay, max_delay=self._max_delay)

    def enqueue(
        self,
        operation: QueueOperation,
        entity_type: EntityType,
        entity_id: str | int,
        payload: dict[str, Any],
        error: str | None,
        *,
        now_ts: float | None = None,
    ) -> int:
        now = time.time() if now_ts is None else float(now_ts)
        entry_id = self._store.add_queue_entry(
            user_id=self._user_id,
            operation=operation,
            entity_type=entity_type,
            entity_id=str(entity_id),
            payload=payload,
            last_error=error,
            next_retry_at=now + self.backoff(0),
            now_ts=now,
        )
        logger.info(
            "Queued %s %s=%s for retry entry_id=%s error=%s",
            operation.value,
            entity_type.value,
            entity_id,
            entry_id,
            error,
        )
        return entry_id

    def pending_count(self) -> int:
        return self._store.count_queue_entries(self._user_id, QueueStatus.PENDING)

    async def drain(self, replay: ReplayFn, *, now_ts: float | None = None) -> DrainReport:
        """
        Replay every due pending entry once, sequentially.

        `replay` must run the same export code path a live caller uses; it receives a
        SyncContext marking the call as queue-sourced so failures are not re-enqueued.
        """
        now = time.time() if now_ts is None else float(now_ts)
        report = DrainReport()

        # Drains are serialized, so any 'processing' row left now was interrupted.
        stranded = self._store.requeue_processing_entries(self._user_id)
        if stranded:
            logger.warning("Requeued %s interrupted queue entries user_id=%s", stranded, self._user_id)

        entries = self._store.list_due_queue_entries(self._user_id, now_ts=now, limit=self._batch_limit)
        if not entries:
            return report

        logger.info("Draining retry queue user_id=%s due=%s", self._user_id, len(entries))

        for entry in entries:
            report.processed += 1
            self._store.update_queue_entry(entry.id, status=QueueStatus.PROCESSING)

            try:
                await replay(entry, SyncContext.for_queue(entry.id))
            except PermanentSyncError as exc:
                retry_count = entry.retry_count + 1
                self._store.update_queue_entry(
                    entry.id,
                    status=QueueStatus.FAILED,
                    retry_count=retry_count,
                    last_error=describe_error(exc),
                )
                report.failed += 1
                logger.warning("Queue entry %s failed permanently: %s", entry.id, describe_error(exc))
                self._audit(entry, AuditOutcome.FAILURE, retry_count, exc, permanent=True)
                continue
            except Exception as exc:
                retry_count = entry.retry_count + 1
                if retry_count >= self._max_retries:
                    self._store.update_queue_entry(
                        entry.id,
                        status=QueueStatus.FAILED,
                        retry_count=retry_count,
                        last_error=describe_error(exc),
                    )
                    report.failed += 1
                    logger.warning(
                        "Queue entry %s exhausted %s retries: %s",
                        entry.id,
                        retry_count,
                        describe_error(exc),
                    )
                    self._audit(entry, AuditOutcome.FAILURE, retry_count, exc, permanent=True)
                else:
                    next_retry_at = now + self.backoff(retry_count)
                    self._store.update_queue_entry(
                        entry.id,
                        status=QueueStatus.PENDING,
                        retry_count=retry_count,
                        next_retry_at=next_retry_at,
                        last_error=describe_error(exc),
                    )
                    report.rescheduled += 1
                    logger.info(
                        "Queue entry %s retry %s/%s failed (%s); next attempt at %.0f",
                        entry.id,
                        retry_count,
                        self._max_retries,
                        classify_error(exc).value,
                        next_retry_at,
                    )
                    self._audit(entry, AuditOutcome.FAILURE, retry_count, exc, permanent=False)
                continue
            except BaseException:
                # Cancelled or interrupted mid-replay: not an attempt, leave it due again.
                self._store.update_queue_entry(entry.id, status=QueueStatus.PENDING)
                logger.info("Drain interrupted; queue entry %s returned to pending", entry.id)
                raise

            self._store.update_queue_entry(entry.id, status=QueueStatus.COMPLETED)
            report.completed += 1
            logger.info("Queue entry %s completed (%s %s)", entry.id, entry.operation.value, entry.entity_id)
            self._audit(entry, AuditOutcome.SUCCESS, entry.retry_count, None, permanent=False)

        return report

    def _audit(
        self,
        entry: QueueEntry,
        outcome: AuditOutcome,
        retry_count: int,
        exc: BaseException | None,
        *,
        permanent: bool,
    ) -> None:
        details: dict[str, Any] = {
            "queue_entry_id": entry.id,
            "operation": entry.operation.value,
            "retry_count": retry_count,
        }
        if exc is not None:
            details["error"] = describe_error(exc)
            details["permanent"] = permanent
        self._store.add_audit_entry(
            user_id=self._user_id,
            operation=AuditOperation.RETRY.value,
            entity_type=entry.entity_type.value,
            entity_id=entry.entity_id,
            status=outcome,
            details=details,
        )
