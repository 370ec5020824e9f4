# src/life_manager/google/tasks_client.py

from __future__ import annotations

import logging
from datetime import date, datetime, timezone, tzinfo
from typing import Any
from urllib.parse import quote

import httpx

from ..sync.sync_models import CredentialHandle, RemoteTask, RemoteTaskInput
from .errors import GoogleApiError, raise_for_google_error

logger = logging.getLogger(__name__)

TASKS_API_BASE = "https://tasks.googleapis.com/tasks/v1"


def _parse_due(raw: Any) -> date | None:
    # Google stores only the date part of `due`; the time is always midnight UTC.
    if not isinstance(raw, str) or len(raw) < 10:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def _format_due(value: date) -> str:
    return f"{value.isoformat()}T00:00:00.000Z"


def parse_remote_task(item: dict[str, Any]) -> RemoteTask | None:
    task_id = item.get("id")
    title = item.get("title")
    if not task_id or not title:
        return None
    return RemoteTask(
        id=str(task_id),
        title=str(title),
        status=str(item.get("status") or "needsAction"),
        notes=item.get("notes") or None,
        due=_parse_due(item.get("due")),
        parent=item.get("parent") or None,
    )


def _task_body(fields: RemoteTaskInput) -> dict[str, Any]:
    body: dict[str, Any] = {}
    if fields.title is not None:
        body["title"] = fields.title
    if fields.notes is not None:
        body["notes"] = fields.notes
    if fields.due is not None:
        body["due"] = _format_due(fields.due)
    return body


class GoogleTasksClient:
    """
    Google Tasks v1 client.

    Listing walks every task list; creation goes to the first list; update and
    completion first locate the list that owns the task.
    """

    def __init__(
        self,
        *,
        base_url: str = TASKS_API_BASE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._tz = tz

    def _client(self, handle: CredentialHandle) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=handle.auth_headers(),
            timeout=self._timeout,
            transport=self._transport,
        )

    def _today(self) -> date:
        if self._tz is not None:
            return datetime.now(self._tz).date()
        return datetime.now().astimezone().date()

    @staticmethod
    async def _list_task_list_ids(client: httpx.AsyncClient) -> list[str]:
        response = await client.get("/users/@me/lists", params={"maxResults": 100})
        raise_for_google_error(response)
        return [str(item["id"]) for item in response.json().get("items") or [] if item.get("id")]

    @staticmethod
    async def _list_open_tasks(client: httpx.AsyncClient, list_id: str) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"showCompleted": "false", "maxResults": 100}
        items: list[dict[str, Any]] = []
        while True:
            response = await client.get(f"/lists/{quote(list_id, safe='')}/tasks", params=params)
            raise_for_google_error(response)
            payload = response.json()
            items.extend(i for i in payload.get("items") or [] if isinstance(i, dict))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return items
            params["pageToken"] = page_token

    async def list_tasks_due_today_or_overdue(
        self,
        handle: CredentialHandle,
        *,
        day: date | None = None,
    ) -> list[RemoteTask]:
        """Incomplete tasks with a due date on or before `day`. Undated tasks are excluded."""
        day = day or self._today()
        out: list[RemoteTask] = []
        async with self._client(handle) as client:
            for list_id in await self._list_task_list_ids(client):
                for item in await self._list_open_tasks(client, list_id):
                    task = parse_remote_task(item)
                    if task is None or task.due is None or task.due > day:
                        continue
                    out.append(task)
        logger.debug("Tasks list day=%s due=%s", day, len(out))
        return out

    async def create_task(self, handle: CredentialHandle, task: RemoteTaskInput) -> str:
        if not task.title:
            raise ValueError("title is required to create a remote task")
        async with self._client(handle) as client:
            list_ids = await self._list_task_list_ids(client)
            if not list_ids:
                raise GoogleApiError(404, "No task lists found")
            response = await client.post(f"/lists/{quote(list_ids[0], safe='')}/tasks", json=_task_body(task))
        raise_for_google_error(response)
        task_id = response.json().get("id")
        if not task_id:
            raise ValueError("Tasks API returned a task without id")
        logger.debug("Remote task created id=%s list=%s", task_id, list_ids[0])
        return str(task_id)

    async def _find_task_list(self, client: httpx.AsyncClient, task_id: str) -> str:
        for list_id in await self._list_task_list_ids(client):
            response = await client.get(f"/lists/{quote(list_id, safe='')}/tasks/{quote(task_id, safe='')}")
            if response.status_code == 404:
                continue
            raise_for_google_error(response)
            return list_id
        raise GoogleApiError(404, f"Task {task_id} not found in any task list")

    async def update_task(self, handle: CredentialHandle, task_id: str, fields: RemoteTaskInput) -> None:
        body = _task_body(fields)
        if not body:
            return
        async with self._client(handle) as client:
            list_id = await self._find_task_list(client, task_id)
            response = await client.patch(
                f"/lists/{quote(list_id, safe='')}/tasks/{quote(task_id, safe='')}",
                json=body,
            )
        raise_for_google_error(response)
        logger.debug("Remote task updated id=%s", task_id)

    async def complete_task(self, handle: CredentialHandle, task_id: str) -> None:
        """PATCH status=completed. Completing an already completed task is a no-op remotely."""
        completed_at = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        async with self._client(handle) as client:
            list_id = await self._find_task_list(client, task_id)
            response = await client.patch(
                f"/lists/{quote(list_id, safe='')}/tasks/{quote(task_id, safe='')}",
                json={"status": "completed", "completed": completed_at},
            )
        raise_for_google_error(response)
        logger.debug("Remote task completed id=%s", task_id)
