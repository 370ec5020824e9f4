# src/life_manager/sync/sync_models.py

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any


class SyncStatus(StrEnum):
    SYNCED = "synced"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> SyncStatus | None:
        # No status means "never synced".
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None


class QueueOperation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    COMPLETE = "complete"
    DELETE = "delete"


class EntityType(StrEnum):
    TASK = "task"
    EVENT = "event"


class QueueStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> QueueStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class AuditOperation(StrEnum):
    IMPORT = "import"
    EXPORT = "export"
    CONFLICT = "conflict"
    RETRY = "retry"


class AuditOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class ConflictType(StrEnum):
    OVERLAP = "overlap"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class SyncMetadata:
    id: int
    task_id: int
    google_task_id: str | None
    google_event_id: str | None
    is_fixed: bool
    sync_status: SyncStatus | None
    sync_error: str | None
    retry_count: int
    last_sync_time: float | None
    created_at: float
    updated_at: float

    @property
    def has_remote_id(self) -> bool:
        return bool(self.google_task_id or self.google_event_id)


@dataclass(slots=True)
class QueueEntry:
    id: int
    user_id: int
    operation: QueueOperation
    entity_type: EntityType
    entity_id: str
    payload: dict[str, Any]
    status: QueueStatus
    retry_count: int
    next_retry_at: float
    last_error: str | None
    created_at: float
    updated_at: float


@dataclass(slots=True)
class AuditLogEntry:
    id: int
    user_id: int
    operation: str
    entity_type: str
    entity_id: str | None
    status: AuditOutcome
    details: dict[str, Any]
    timestamp: float


@dataclass(frozen=True, slots=True)
class Conflict:
    type: ConflictType
    entities: tuple[str, str]
    description: str


@dataclass(frozen=True, slots=True)
class SyncContext:
    """
    Invocation context threaded through export calls.

    `from_queue` is set when the export is a replay of a queue entry: failures then
    update that entry instead of enqueueing a new one.
    """

    from_queue: bool = False
    queue_entry_id: int | None = None

    @classmethod
    def for_queue(cls, entry_id: int) -> SyncContext:
        return cls(from_queue=True, queue_entry_id=entry_id)


LIVE_CONTEXT = SyncContext()


@dataclass(slots=True)
class SyncError:
    operation: str
    entity_type: str
    entity_id: str
    error: str
    timestamp: float = field(default_factory=time.time)
    retry_count: int = 0


@dataclass(slots=True)
class ImportResult:
    calendar_events_imported: int = 0
    tasks_imported: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    errors: list[SyncError] = field(default_factory=list)


@dataclass(slots=True)
class FailedOperation:
    task_id: int
    error: str
    retry_count: int
    last_attempt: float


@dataclass(slots=True)
class SyncStatusReport:
    is_connected: bool
    has_tokens: bool
    connection_error: str | None
    last_sync_time: float | None
    pending_operations: int
    failed_operations: list[FailedOperation] = field(default_factory=list)


@dataclass(slots=True)
class DrainReport:
    processed: int = 0
    completed: int = 0
    rescheduled: int = 0
    failed: int = 0


# ---- provider-facing shapes ----


@dataclass(frozen=True, slots=True)
class CredentialHandle:
    """A live access token for one user. Obtained from the token manager per operation."""

    user_id: int
    access_token: str
    expires_at: float | None = None

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


@dataclass(frozen=True, slots=True)
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    description: str | None = None
    location: str | None = None
    attendees: tuple[str, ...] = ()
    recurring_event_id: str | None = None


@dataclass(frozen=True, slots=True)
class CalendarEventInput:
    summary: str
    start: datetime
    end: datetime
    description: str | None = None


@dataclass(frozen=True, slots=True)
class RemoteTask:
    id: str
    title: str
    status: str  # "needsAction" | "completed"
    notes: str | None = None
    due: date | None = None
    parent: str | None = None
    duration_minutes: int | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True, slots=True)
class RemoteTaskInput:
    """Fields to send to the task API. None means "leave unchanged" on update."""

    title: str | None = None
    notes: str | None = None
    due: date | None = None
