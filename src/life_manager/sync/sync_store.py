# src/life_manager/sync/sync_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from .sync_models import (
    AuditLogEntry,
    AuditOutcome,
    EntityType,
    QueueEntry,
    QueueOperation,
    QueueStatus,
    SyncMetadata,
    SyncStatus,
)

logger = logging.getLogger(__name__)


class SyncStore:
    """
    SQLite persistence for the sync engine.

    Tables (same database file as TaskStore):
    - task_sync_metadata: 1:1 with tasks (UNIQUE task_id, cascades on task delete)
    - sync_queue: durable retry queue
    - sync_log: append-only audit log

    No business rules live here; state transitions are decided by the engine.
    Each method opens its own SQLite connection.
    """

    def __init__(self, db_path: str | Path = "life_manager.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("SyncStore ready db=%s", self._db_path)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_sync_metadata (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL UNIQUE REFERENCES tasks(id) ON DELETE CASCADE,
                    google_task_id TEXT,
                    google_event_id TEXT,
                    is_fixed INTEGER NOT NULL DEFAULT 0,
                    sync_status TEXT,
                    sync_error TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    last_sync_time REAL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    operation TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    status TEXT NOT NULL DEFAULT 'pending',
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    next_retry_at REAL NOT NULL,
                    last_error TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    operation TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT,
                    status TEXT NOT NULL,
                    details TEXT NOT NULL DEFAULT '{}',
                    timestamp REAL NOT NULL
                )
                """
            )

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_meta_google_task ON task_sync_metadata(google_task_id)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_meta_google_event ON task_sync_metadata(google_event_id)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_queue_due ON sync_queue(user_id, status, next_retry_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_sync_log_user_ts ON sync_log(user_id, timestamp)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _json_dumps(data: dict[str, Any] | None) -> str:
        if not data:
            return "{}"
        return json.dumps(data, ensure_ascii=False, default=str)

    @staticmethod
    def _json_loads(raw: str | None) -> dict[str, Any]:
        if not raw:
            return {}
        try:
            val = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Corrupt JSON column value; treating as {}.")
            return {}
        return val if isinstance(val, dict) else {}

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> SyncMetadata:
        return SyncMetadata(
            id=int(row["id"]),
            task_id=int(row["task_id"]),
            google_task_id=row["google_task_id"],
            google_event_id=row["google_event_id"],
            is_fixed=bool(row["is_fixed"]),
            sync_status=SyncStatus.from_db(row["sync_status"]),
            sync_error=row["sync_error"],
            retry_count=int(row["retry_count"] or 0),
            last_sync_time=float(row["last_sync_time"]) if row["last_sync_time"] is not None else None,
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def _row_to_queue_entry(self, row: sqlite3.Row) -> QueueEntry:
        return QueueEntry(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            operation=QueueOperation(row["operation"]),
            entity_type=EntityType(row["entity_type"]),
            entity_id=str(row["entity_id"]),
            payload=self._json_loads(row["payload"]),
            status=QueueStatus.from_db(row["status"]),
            retry_count=int(row["retry_count"] or 0),
            next_retry_at=float(row["next_retry_at"] or 0.0),
            last_error=row["last_error"],
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def _row_to_audit(self, row: sqlite3.Row) -> AuditLogEntry:
        return AuditLogEntry(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            operation=str(row["operation"]),
            entity_type=str(row["entity_type"]),
            entity_id=row["entity_id"],
            status=AuditOutcome(row["status"]),
            details=self._json_loads(row["details"]),
            timestamp=float(row["timestamp"]),
        )

    # ---- sync metadata ----

    def _fetch_metadata(self, where: str, value: Any) -> SyncMetadata | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT * FROM task_sync_metadata WHERE {where} = ? LIMIT 1", (value,))
            row = cur.fetchone()
            return self._row_to_metadata(row) if row else None
        finally:
            conn.close()

    def get_metadata(self, task_id: int) -> SyncMetadata | None:
        return self._fetch_metadata("task_id", int(task_id))

    def find_by_google_task_id(self, google_task_id: str) -> SyncMetadata | None:
        if not google_task_id:
            return None
        return self._fetch_metadata("google_task_id", google_task_id)

    def find_by_google_event_id(self, google_event_id: str) -> SyncMetadata | None:
        if not google_event_id:
            return None
        return self._fetch_metadata("google_event_id", google_event_id)

    def create_metadata(
        self,
        task_id: int,
        *,
        google_task_id: str | None = None,
        google_event_id: str | None = None,
        is_fixed: bool = False,
        sync_status: SyncStatus | None = None,
        sync_error: str | None = None,
        retry_count: int = 0,
        last_sync_time: float | None = None,
    ) -> SyncMetadata:
        if sync_status is not None and not (google_task_id or google_event_id):
            raise ValueError("sync metadata with a status needs at least one remote id")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO task_sync_metadata(
                    task_id, google_task_id, google_event_id, is_fixed,
                    sync_status, sync_error, retry_count, last_sync_time,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(task_id),
                    google_task_id,
                    google_event_id,
                    1 if is_fixed else 0,
                    sync_status.value if sync_status is not None else None,
                    sync_error,
                    int(retry_count),
                    last_sync_time,
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        meta = self.get_metadata(task_id)
        if meta is None:
            raise RuntimeError(f"sync metadata for task {task_id} vanished after insert")
        logger.debug(
            "Sync metadata created task_id=%s google_task_id=%s google_event_id=%s status=%s",
            task_id,
            google_task_id,
            google_event_id,
            meta.sync_status,
        )
        return meta

    def mark_synced(
        self,
        task_id: int,
        *,
        google_task_id: str | None = None,
        google_event_id: str | None = None,
        now_ts: float | None = None,
    ) -> None:
        """status=synced, error cleared, retry count reset; remote ids are only filled, never cleared."""
        now = time.time() if now_ts is None else float(now_ts)
        conn = self._get_conn()
        try:
            conn.execute(
                """
                UPDATE task_sync_metadata
                SET google_task_id = COALESCE(?, google_task_id),
                    google_event_id = COALESCE(?, google_event_id),
                    sync_status = 'synced',
                    sync_error = NULL,
                    retry_count = 0,
                    last_sync_time = ?,
                    updated_at = ?
                WHERE task_id = ?
                """,
                (google_task_id, google_event_id, now, now, int(task_id)),
            )
            conn.commit()
        finally:
            conn.close()

    def mark_failed(
        self,
        task_id: int,
        error: str,
        *,
        google_task_id: str | None = None,
        google_event_id: str | None = None,
    ) -> None:
        """status=failed, error recorded, retry count incremented."""
        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute(
                """
                UPDATE task_sync_metadata
                SET google_task_id = COALESCE(?, google_task_id),
                    google_event_id = COALESCE(?, google_event_id),
                    sync_status = 'failed',
                    sync_error = ?,
                    retry_count = retry_count + 1,
                    updated_at = ?
                WHERE task_id = ?
                """,
                (google_task_id, google_event_id, error, now, int(task_id)),
            )
            conn.commit()
        finally:
            conn.close()

    def list_failed_metadata(self) -> list[SyncMetadata]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM task_sync_metadata WHERE sync_status = 'failed' ORDER BY updated_at DESC"
            )
            return [self._row_to_metadata(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def delete_metadata(self, task_id: int) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM task_sync_metadata WHERE task_id = ?", (int(task_id),))
            conn.commit()
        finally:
            conn.close()

    # ---- retry queue ----

    def add_queue_entry(
        self,
        *,
        user_id: int,
        operation: QueueOperation,
        entity_type: EntityType,
        entity_id: str,
        payload: dict[str, Any],
        last_error: str | None,
        next_retry_at: float,
        now_ts: float | None = None,
    ) -> int:
        now = time.time() if now_ts is None else float(now_ts)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO sync_queue(
                    user_id, operation, entity_type, entity_id, payload,
                    status, retry_count, next_retry_at, last_error,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 'pending', 0, ?, ?, ?, ?)
                """,
                (
                    int(user_id),
                    operation.value,
                    entity_type.value,
                    str(entity_id),
                    self._json_dumps(payload),
                    float(next_retry_at),
                    last_error,
                    now,
                    now,
                ),
            )
            conn.commit()
            if cur.lastrowid is None:
                raise RuntimeError("SQLite did not return lastrowid for sync_queue insert")
            return int(cur.lastrowid)
        finally:
            conn.close()

    def get_queue_entry(self, entry_id: int) -> QueueEntry | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM sync_queue WHERE id = ?", (int(entry_id),))
            row = cur.fetchone()
            return self._row_to_queue_entry(row) if row else None
        finally:
            conn.close()

    def list_due_queue_entries(self, user_id: int, *, now_ts: float, limit: int = 100) -> list[QueueEntry]:
        """Pending entries whose next_retry_at has passed, oldest first."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM sync_queue
                WHERE user_id = ?
                  AND status = 'pending'
                  AND next_retry_at <= ?
                ORDER BY next_retry_at ASC, id ASC
                    LIMIT ?
                """,
                (int(user_id), float(now_ts), int(limit)),
            )
            return [self._row_to_queue_entry(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_queue_entries(self, user_id: int, *, status: QueueStatus | None = None) -> list[QueueEntry]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if status is None:
                cur.execute("SELECT * FROM sync_queue WHERE user_id = ? ORDER BY id ASC", (int(user_id),))
            else:
                cur.execute(
                    "SELECT * FROM sync_queue WHERE user_id = ? AND status = ? ORDER BY id ASC",
                    (int(user_id), status.value),
                )
            return [self._row_to_queue_entry(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def count_queue_entries(self, user_id: int, status: QueueStatus) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE user_id = ? AND status = ?",
                (int(user_id), status.value),
            )
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def requeue_processing_entries(self, user_id: int) -> int:
        """Return entries stranded in 'processing' (interrupted drain) to 'pending'."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE sync_queue SET status = ?, updated_at = ? WHERE user_id = ? AND status = ?",
                (QueueStatus.PENDING.value, time.time(), int(user_id), QueueStatus.PROCESSING.value),
            )
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def update_queue_entry(
        self,
        entry_id: int,
        *,
        status: QueueStatus,
        retry_count: int | None = None,
        next_retry_at: float | None = None,
        last_error: str | None = None,
    ) -> None:
        fields = ["status = ?"]
        params: list[Any] = [status.value]

        if retry_count is not None:
            fields.append("retry_count = ?")
            params.append(int(retry_count))

        if next_retry_at is not None:
            fields.append("next_retry_at = ?")
            params.append(float(next_retry_at))

        if last_error is not None:
            fields.append("last_error = ?")
            params.append(last_error)

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(entry_id))

        conn = self._get_conn()
        try:
            conn.execute(f"UPDATE sync_queue SET {', '.join(fields)} WHERE id = ?", params)
            conn.commit()
        finally:
            conn.close()

    # ---- audit log ----

    def add_audit_entry(
        self,
        *,
        user_id: int,
        operation: str,
        entity_type: str,
        entity_id: str | None,
        status: AuditOutcome,
        details: dict[str, Any] | None = None,
        now_ts: float | None = None,
    ) -> int:
        ts = time.time() if now_ts is None else float(now_ts)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO sync_log(user_id, operation, entity_type, entity_id, status, details, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (int(user_id), operation, entity_type, entity_id, status.value, self._json_dumps(details), ts),
            )
            conn.commit()
            if cur.lastrowid is None:
                raise RuntimeError("SQLite did not return lastrowid for sync_log insert")
            return int(cur.lastrowid)
        finally:
            conn.close()

    def list_audit_entries(
        self,
        user_id: int,
        *,
        operation: str | None = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Newest first."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if operation is None:
                cur.execute(
                    "SELECT * FROM sync_log WHERE user_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
                    (int(user_id), int(limit)),
                )
            else:
                cur.execute(
                    """
                    SELECT * FROM sync_log
                    WHERE user_id = ? AND operation = ?
                    ORDER BY timestamp DESC, id DESC
                        LIMIT ?
                    """,
                    (int(user_id), operation, int(limit)),
                )
            return [self._row_to_audit(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def latest_audit_timestamp(self, user_id: int) -> float | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT MAX(timestamp) FROM sync_log WHERE user_id = ?", (int(user_id),))
            (ts,) = cur.fetchone()
            return float(ts) if ts is not None else None
        finally:
            conn.close()
