# src/life_manager/google/calendar_client.py

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any
from urllib.parse import quote

import httpx

from ..sync.sync_models import CalendarEvent, CalendarEventInput, CredentialHandle
from .errors import raise_for_google_error

logger = logging.getLogger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
PRIMARY_CALENDAR = "primary"


def _parse_event_time(raw: Any) -> datetime | None:
    """Timed events carry dateTime; all-day events only carry date and are skipped."""
    if not isinstance(raw, dict):
        return None
    value = raw.get("dateTime")
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Unparseable event dateTime %r", value)
        return None


def parse_event(item: dict[str, Any]) -> CalendarEvent | None:
    event_id = item.get("id")
    summary = item.get("summary")
    if not event_id or not summary:
        return None

    start = _parse_event_time(item.get("start"))
    end = _parse_event_time(item.get("end"))
    if start is None or end is None:
        return None

    attendees: list[str] = []
    for attendee in item.get("attendees") or []:
        if not isinstance(attendee, dict):
            continue
        who = attendee.get("displayName") or attendee.get("email")
        if who:
            attendees.append(str(who))

    return CalendarEvent(
        id=str(event_id),
        title=str(summary),
        start=start,
        end=end,
        description=item.get("description") or None,
        location=item.get("location") or None,
        attendees=tuple(attendees),
        recurring_event_id=item.get("recurringEventId") or None,
    )


def _event_body(event: CalendarEventInput) -> dict[str, Any]:
    body: dict[str, Any] = {
        "summary": event.summary,
        "start": {"dateTime": event.start.isoformat()},
        "end": {"dateTime": event.end.isoformat()},
    }
    if event.description is not None:
        body["description"] = event.description
    return body


class GoogleCalendarClient:
    """
    Google Calendar v3 client for the user's primary calendar.

    A fresh httpx.AsyncClient is opened per operation so one instance can be shared
    across event loops (console thread and background worker).
    """

    def __init__(
        self,
        *,
        base_url: str = CALENDAR_API_BASE,
        calendar_id: str = PRIMARY_CALENDAR,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._calendar_id = calendar_id
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

    @property
    def _events_path(self) -> str:
        return f"/calendars/{quote(self._calendar_id, safe='')}/events"

    def _day_bounds(self, day: date | None) -> tuple[datetime, datetime]:
        tz = self._tz or datetime.now().astimezone().tzinfo
        day = day or datetime.now(tz).date()
        start = datetime.combine(day, time(), tzinfo=tz)
        return start, start + timedelta(days=1)

    async def list_events_for_today(
        self,
        handle: CredentialHandle,
        *,
        day: date | None = None,
    ) -> list[CalendarEvent]:
        time_min, time_max = self._day_bounds(day)
        params: dict[str, Any] = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": 250,
        }

        events: list[CalendarEvent] = []
        skipped = 0
        async with self._client(handle) as client:
            while True:
                response = await client.get(self._events_path, params=params)
                raise_for_google_error(response)
                payload = response.json()

                for item in payload.get("items") or []:
                    event = parse_event(item) if isinstance(item, dict) else None
                    if event is None:
                        skipped += 1
                        continue
                    events.append(event)

                page_token = payload.get("nextPageToken")
                if not page_token:
                    break
                params["pageToken"] = page_token

        logger.debug("Calendar list day=%s events=%s skipped=%s", time_min.date(), len(events), skipped)
        return events

    async def create_event(self, handle: CredentialHandle, event: CalendarEventInput) -> str:
        async with self._client(handle) as client:
            response = await client.post(self._events_path, json=_event_body(event))
        raise_for_google_error(response)
        event_id = response.json().get("id")
        if not event_id:
            raise ValueError("Calendar API returned an event without id")
        logger.debug("Calendar event created id=%s", event_id)
        return str(event_id)

    async def update_event(self, handle: CredentialHandle, event_id: str, event: CalendarEventInput) -> None:
        async with self._client(handle) as client:
            response = await client.patch(
                f"{self._events_path}/{quote(event_id, safe='')}",
                json=_event_body(event),
            )
        raise_for_google_error(response)
        logger.debug("Calendar event updated id=%s", event_id)

    async def delete_event(self, handle: CredentialHandle, event_id: str) -> None:
        async with self._client(handle) as client:
            response = await client.delete(f"{self._events_path}/{quote(event_id, safe='')}")
        raise_for_google_error(response)
        logger.debug("Calendar event deleted id=%s", event_id)
