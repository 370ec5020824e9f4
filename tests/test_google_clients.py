# tests/test_google_clients.py

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from life_manager.google.calendar_client import GoogleCalendarClient, parse_event
from life_manager.google.errors import GoogleApiError
from life_manager.google.tasks_client import GoogleTasksClient, parse_remote_task
from life_manager.sync.errors import ErrorKind, classify_error
from life_manager.sync.sync_models import CalendarEventInput, CredentialHandle, RemoteTaskInput

HANDLE = CredentialHandle(user_id=1, access_token="secret-token")
UTC = timezone.utc


class Recorder:
    """MockTransport handler that records requests and answers from a route table."""

    def __init__(self, routes) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.routes(request)


def _calendar(routes) -> tuple[GoogleCalendarClient, Recorder]:
    recorder = Recorder(routes)
    client = GoogleCalendarClient(base_url="https://cal.test/v3", transport=httpx.MockTransport(recorder), tz=UTC)
    return client, recorder


def _tasks(routes) -> tuple[GoogleTasksClient, Recorder]:
    recorder = Recorder(routes)
    client = GoogleTasksClient(base_url="https://tasks.test/v1", transport=httpx.MockTransport(recorder), tz=UTC)
    return client, recorder


# ---- calendar ----


def test_parse_event_skips_all_day_and_untitled() -> None:
    assert parse_event({"id": "a", "summary": "Holiday", "start": {"date": "2025-01-15"}, "end": {"date": "2025-01-16"}}) is None
    assert parse_event({"id": "b", "start": {"dateTime": "2025-01-15T09:00:00Z"}, "end": {"dateTime": "2025-01-15T10:00:00Z"}}) is None

    event = parse_event(
        {
            "id": "c",
            "summary": "Standup",
            "start": {"dateTime": "2025-01-15T09:00:00+00:00"},
            "end": {"dateTime": "2025-01-15T09:15:00+00:00"},
            "attendees": [{"displayName": "Ann"}, {"email": "bob@example.com"}, {}],
            "recurringEventId": "series-1",
        }
    )
    assert event is not None
    assert event.attendees == ("Ann", "bob@example.com")
    assert event.recurring_event_id == "series-1"
    assert event.end - event.start == timedelta(minutes=15)


@pytest.mark.asyncio
async def test_list_events_paginates_and_bounds_the_day() -> None:
    def routes(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret-token"
        if request.url.params.get("pageToken") == "p2":
            return httpx.Response(200, json={"items": [
                {"id": "e2", "summary": "Lunch", "start": {"dateTime": "2025-01-15T12:00:00Z"}, "end": {"dateTime": "2025-01-15T13:00:00Z"}},
            ]})
        return httpx.Response(200, json={"nextPageToken": "p2", "items": [
            {"id": "e1", "summary": "Standup", "start": {"dateTime": "2025-01-15T09:00:00Z"}, "end": {"dateTime": "2025-01-15T09:15:00Z"}},
            {"id": "x", "summary": "All day", "start": {"date": "2025-01-15"}, "end": {"date": "2025-01-16"}},
        ]})

    client, recorder = _calendar(routes)
    events = await client.list_events_for_today(HANDLE, day=date(2025, 1, 15))

    assert [e.id for e in events] == ["e1", "e2"]
    first = recorder.requests[0]
    assert first.url.path == "/v3/calendars/primary/events"
    assert first.url.params["singleEvents"] == "true"
    assert first.url.params["orderBy"] == "startTime"
    assert datetime.fromisoformat(first.url.params["timeMin"]) == datetime(2025, 1, 15, tzinfo=UTC)
    assert datetime.fromisoformat(first.url.params["timeMax"]) == datetime(2025, 1, 16, tzinfo=UTC)


@pytest.mark.asyncio
async def test_create_event_posts_summary_and_times() -> None:
    def routes(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert request.method == "POST"
        assert body["summary"] == "Write report"
        assert body["start"] == {"dateTime": "2025-01-15T09:00:00+00:00"}
        assert "description" not in body
        return httpx.Response(200, json={"id": "new-evt"})

    client, _ = _calendar(routes)
    start = datetime(2025, 1, 15, 9, tzinfo=UTC)
    event_id = await client.create_event(
        HANDLE, CalendarEventInput(summary="Write report", start=start, end=start + timedelta(hours=1))
    )
    assert event_id == "new-evt"


@pytest.mark.asyncio
async def test_error_responses_carry_status_and_retry_after() -> None:
    def routes(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            headers={"Retry-After": "12"},
            json={"error": {"code": 429, "message": "Rate Limit Exceeded"}},
        )

    client, _ = _calendar(routes)
    with pytest.raises(GoogleApiError) as info:
        await client.delete_event(HANDLE, "evt-1")

    assert info.value.status_code == 429
    assert info.value.retry_after == 12.0
    assert info.value.message == "Rate Limit Exceeded"
    assert classify_error(info.value) is ErrorKind.RATE_LIMITED


@pytest.mark.asyncio
async def test_error_message_does_not_echo_token() -> None:
    def routes(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="unauthorized")

    client, _ = _calendar(routes)
    with pytest.raises(GoogleApiError) as info:
        await client.delete_event(HANDLE, "evt-1")

    assert "secret-token" not in str(info.value)
    assert classify_error(info.value) is ErrorKind.FATAL


# ---- tasks ----


def test_parse_remote_task_keeps_date_part_of_due() -> None:
    task = parse_remote_task({"id": "t1", "title": "Pay", "status": "needsAction", "due": "2025-01-14T00:00:00.000Z"})
    assert task is not None
    assert task.due == date(2025, 1, 14)
    assert not task.is_completed
    assert parse_remote_task({"id": "t2"}) is None


def _task_routes(lists: dict[str, list[dict]], *, writes: list[tuple[str, str, dict]] | None = None):
    def routes(request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1")
        if path == "/users/@me/lists":
            return httpx.Response(200, json={"items": [{"id": list_id} for list_id in lists]})

        parts = path.split("/")  # ["", "lists", list_id, "tasks", (task_id)]
        list_id = parts[2]
        if len(parts) == 4 and request.method == "GET":
            assert request.url.params["showCompleted"] == "false"
            return httpx.Response(200, json={"items": lists[list_id]})
        if len(parts) == 4 and request.method == "POST":
            if writes is not None:
                writes.append((request.method, list_id, json.loads(request.content)))
            return httpx.Response(200, json={"id": "created-1"})

        task_id = parts[4]
        if not any(t["id"] == task_id for t in lists[list_id]):
            return httpx.Response(404, json={"error": {"message": "Task not found"}})
        if request.method == "GET":
            return httpx.Response(200, json={"id": task_id})
        if writes is not None:
            writes.append((request.method, list_id, json.loads(request.content)))
        return httpx.Response(200, json={"id": task_id})

    return routes


@pytest.mark.asyncio
async def test_list_tasks_due_today_or_overdue_across_lists() -> None:
    lists = {
        "inbox": [
            {"id": "a", "title": "Overdue", "status": "needsAction", "due": "2025-01-10T00:00:00.000Z"},
            {"id": "b", "title": "Someday", "status": "needsAction"},
        ],
        "work": [
            {"id": "c", "title": "Today", "status": "needsAction", "due": "2025-01-15T00:00:00.000Z"},
            {"id": "d", "title": "Tomorrow", "status": "needsAction", "due": "2025-01-16T00:00:00.000Z"},
        ],
    }
    client, _ = _tasks(_task_routes(lists))

    tasks = await client.list_tasks_due_today_or_overdue(HANDLE, day=date(2025, 1, 15))

    assert sorted(t.id for t in tasks) == ["a", "c"]


@pytest.mark.asyncio
async def test_create_task_goes_to_first_list() -> None:
    writes: list[tuple[str, str, dict]] = []
    client, _ = _tasks(_task_routes({"inbox": [], "work": []}, writes=writes))

    task_id = await client.create_task(HANDLE, RemoteTaskInput(title="Pay", notes="ACME", due=date(2025, 1, 20)))

    assert task_id == "created-1"
    assert writes == [("POST", "inbox", {"title": "Pay", "notes": "ACME", "due": "2025-01-20T00:00:00.000Z"})]


@pytest.mark.asyncio
async def test_create_task_without_lists_is_not_found() -> None:
    client, _ = _tasks(_task_routes({}))

    with pytest.raises(GoogleApiError) as info:
        await client.create_task(HANDLE, RemoteTaskInput(title="Pay"))

    assert info.value.status_code == 404


@pytest.mark.asyncio
async def test_complete_task_finds_owning_list() -> None:
    writes: list[tuple[str, str, dict]] = []
    lists = {"inbox": [{"id": "a"}], "work": [{"id": "b"}]}
    client, _ = _tasks(_task_routes(lists, writes=writes))

    await client.complete_task(HANDLE, "b")

    method, list_id, body = writes[0]
    assert (method, list_id, body["status"]) == ("PATCH", "work", "completed")
    assert body["completed"].endswith("Z")


@pytest.mark.asyncio
async def test_update_unknown_task_is_not_found() -> None:
    client, _ = _tasks(_task_routes({"inbox": []}))

    with pytest.raises(GoogleApiError) as info:
        await client.update_task(HANDLE, "ghost", RemoteTaskInput(title="x"))

    assert info.value.status_code == 404
