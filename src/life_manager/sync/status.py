# src/life_manager/sync/status.py

from __future__ import annotations

import logging

from ..core.ports import TokenProvider
from .errors import describe_error
from .sync_models import FailedOperation, QueueStatus, SyncStatusReport
from .sync_store import SyncStore

logger = logging.getLogger(__name__)


async def get_sync_status(tokens: TokenProvider, sync_store: SyncStore, user_id: int) -> SyncStatusReport:
    """
    Connection and queue health for one user. Never raises.

    has_tokens distinguishes "never connected" from "connected but broken";
    a broken connection is reported through connection_error.
    """
    try:
        has_tokens = bool(tokens.has_tokens(user_id))
    except Exception:
        logger.exception("has_tokens failed user_id=%s", user_id)
        has_tokens = False

    is_connected = False
    connection_error: str | None = None
    if has_tokens:
        try:
            await tokens.get_credential_handle(user_id)
            is_connected = True
        except Exception as exc:
            connection_error = describe_error(exc)
    else:
        connection_error = "Not connected to Google"

    last_sync_time: float | None = None
    try:
        last_sync_time = sync_store.latest_audit_timestamp(user_id)
    except Exception:
        logger.exception("latest_audit_timestamp failed user_id=%s", user_id)

    pending = 0
    try:
        pending = sync_store.count_queue_entries(user_id, QueueStatus.PENDING)
    except Exception:
        logger.exception("count_queue_entries failed user_id=%s", user_id)

    failed: list[FailedOperation] = []
    try:
        for meta in sync_store.list_failed_metadata():
            failed.append(
                FailedOperation(
                    task_id=meta.task_id,
                    error=meta.sync_error or "Unknown error",
                    retry_count=meta.retry_count,
                    last_attempt=meta.updated_at,
                )
            )
    except Exception:
        logger.exception("list_failed_metadata failed")

    return SyncStatusReport(
        is_connected=is_connected,
        has_tokens=has_tokens,
        connection_error=connection_error,
        last_sync_time=last_sync_time,
        pending_operations=pending,
        failed_operations=failed,
    )
