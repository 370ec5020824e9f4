# src/life_manager/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the sync engine.

The engine depends on Protocols instead of concrete implementations.
This keeps the Google clients swappable and makes testing easier.
"""

from typing import Protocol

from ..sync.sync_models import (
    CalendarEvent,
    CalendarEventInput,
    CredentialHandle,
    RemoteTask,
    RemoteTaskInput,
)


class TokenProvider(Protocol):
    """
    Supplies a live credential handle per user.

    get_credential_handle raises CredentialError("no tokens" / "refresh failed").
    """

    async def get_credential_handle(self, user_id: int) -> CredentialHandle: ...
    def has_tokens(self, user_id: int) -> bool: ...


class CalendarApi(Protocol):
    async def list_events_for_today(self, handle: CredentialHandle) -> list[CalendarEvent]: ...
    async def create_event(self, handle: CredentialHandle, event: CalendarEventInput) -> str: ...
    async def update_event(self, handle: CredentialHandle, event_id: str, event: CalendarEventInput) -> None: ...
    async def delete_event(self, handle: CredentialHandle, event_id: str) -> None: ...


class TaskApi(Protocol):
    async def list_tasks_due_today_or_overdue(self, handle: CredentialHandle) -> list[RemoteTask]: ...
    async def create_task(self, handle: CredentialHandle, task: RemoteTaskInput) -> str: ...
    async def update_task(self, handle: CredentialHandle, task_id: str, fields: RemoteTaskInput) -> None: ...
    async def complete_task(self, handle: CredentialHandle, task_id: str) -> None: ...
