"""Google Calendar tools: list, create, update and delete events.

The Google API client is synchronous, so every request runs through
asyncio.to_thread. Writes are refused unless calendar_allow_writes is set.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from troy.agent.dispatch import ToolRegistry
from troy.config import Settings

logger = logging.getLogger(__name__)

_TOKEN_URI = "https://oauth2.googleapis.com/token"
_SCOPES = ["https://www.googleapis.com/auth/calendar"]
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class CalendarWritesDisabled(RuntimeError):
    def __init__(self) -> None:
        super().__init__(
            "Calendar edits are disabled. Set the GOOGLE_CALENDAR_ALLOW_WRITES "
            "environment variable to enable them."
        )


class CalendarNotConfigured(RuntimeError):
    pass


def is_date_only(value: str) -> bool:
    return bool(_DATE_ONLY_RE.match(value))


def make_event_time(value: str, tz: str | None = None) -> dict[str, str]:
    """Google event time: all-day for YYYY-MM-DD, otherwise dateTime + timeZone."""
    if is_date_only(value):
        return {"date": value}
    return {"dateTime": value, "timeZone": tz or "UTC"}


def format_date_with_day(value: str, tz: str = "Europe/London") -> str:
    """Human-readable event time with weekday, e.g. "Monday, 2026-02-23 at 11am".

    Datetimes are shown in `tz`. Values that do not parse come back unchanged.
    """
    if is_date_only(value):
        try:
            day = datetime.strptime(value, "%Y-%m-%d")
        except ValueError:
            return value
        return f"{day.strftime('%A')}, {value}"

    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return value
    if moment.tzinfo is not None:
        moment = moment.astimezone(ZoneInfo(tz))

    hour = moment.hour % 12 or 12
    suffix = "am" if moment.hour < 12 else "pm"
    clock = f"{hour}{suffix}" if moment.minute == 0 else f"{hour}:{moment.minute:02d}{suffix}"
    return f"{moment.strftime('%A')}, {moment.strftime('%Y-%m-%d')} at {clock}"


class GoogleCalendar:
    """Thin async wrapper around the Calendar v3 events resource."""

    def __init__(self, settings: Settings, service: Any | None = None) -> None:
        self._settings = settings
        self._service = service

    def _events(self) -> Any:
        if self._service is None:
            s = self._settings
            if not (s.google_client_id and s.google_client_secret and s.google_refresh_token):
                raise CalendarNotConfigured(
                    "Google Calendar requires GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, "
                    "and GOOGLE_REFRESH_TOKEN environment variables."
                )
            creds = Credentials(
                None,
                refresh_token=s.google_refresh_token,
                token_uri=_TOKEN_URI,
                client_id=s.google_client_id,
                client_secret=s.google_client_secret,
                scopes=_SCOPES,
            )
            self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service.events()

    def _require_writes(self) -> None:
        if not self._settings.calendar_allow_writes:
            logger.warning("Calendar writes are disabled")
            raise CalendarWritesDisabled()

    async def list_events(
        self,
        time_min: str | None = None,
        time_max: str | None = None,
        max_results: int = 10,
        calendar_id: str | None = None,
    ) -> str:
        now = datetime.now(UTC)
        request = self._events().list(
            calendarId=calendar_id or self._settings.google_calendar_id,
            timeMin=time_min or now.isoformat(),
            timeMax=time_max or (now + timedelta(days=7)).isoformat(),
            maxResults=int(max_results),
            singleEvents=True,
            orderBy="startTime",
        )
        response = await asyncio.to_thread(request.execute)

        events = response.get("items") or []
        if not events:
            return "No events found in the specified time range."

        tz = self._settings.display_timezone
        blocks = []
        for event in events:
            start = event.get("start", {})
            end = event.get("end", {})
            lines = [
                f"ID: {event.get('id')}",
                f"Title: {event.get('summary') or '(no title)'}",
                f"Start: {format_date_with_day(start.get('dateTime') or start.get('date') or 'Unknown', tz)}",
                f"End: {format_date_with_day(end.get('dateTime') or end.get('date') or 'Unknown', tz)}",
            ]
            if event.get("location"):
                lines.append(f"Location: {event['location']}")
            if event.get("description"):
                lines.append(f"Description: {event['description']}")
            blocks.append("\n".join(lines))

        return f"Found {len(events)} event(s):\n\n" + "\n\n".join(blocks)

    async def create_event(
        self,
        summary: str,
        start: str,
        end: str,
        description: str | None = None,
        location: str | None = None,
        calendar_id: str | None = None,
        timezone: str | None = None,
    ) -> str:
        self._require_writes()
        body: dict[str, Any] = {
            "summary": summary,
            "start": make_event_time(start, timezone),
            "end": make_event_time(end, timezone),
        }
        if description:
            body["description"] = description
        if location:
            body["location"] = location

        request = self._events().insert(calendarId=calendar_id or self._settings.google_calendar_id, body=body)
        event = await asyncio.to_thread(request.execute)
        logger.info("Created calendar event %s", event.get("id"))
        return (
            "Event created successfully.\n"
            f"ID: {event.get('id')}\n"
            f"Title: {event.get('summary')}\n"
            f"Link: {event.get('htmlLink') or '(none)'}"
        )

    async def update_event(
        self,
        event_id: str,
        summary: str | None = None,
        start: str | None = None,
        end: str | None = None,
        description: str | None = None,
        location: str | None = None,
        calendar_id: str | None = None,
        timezone: str | None = None,
    ) -> str:
        self._require_writes()
        cal_id = calendar_id or self._settings.google_calendar_id
        events = self._events()

        event = await asyncio.to_thread(events.get(calendarId=cal_id, eventId=event_id).execute)
        if summary is not None:
            event["summary"] = summary
        if description is not None:
            event["description"] = description
        if location is not None:
            event["location"] = location
        if start is not None:
            event["start"] = make_event_time(start, timezone)
        if end is not None:
            event["end"] = make_event_time(end, timezone)

        updated = await asyncio.to_thread(
            events.update(calendarId=cal_id, eventId=event_id, body=event).execute
        )
        logger.info("Updated calendar event %s", event_id)
        return f"Event updated successfully.\nID: {updated.get('id')}\nTitle: {updated.get('summary')}"

    async def delete_event(self, event_id: str, calendar_id: str | None = None) -> str:
        self._require_writes()
        request = self._events().delete(
            calendarId=calendar_id or self._settings.google_calendar_id,
            eventId=event_id,
        )
        await asyncio.to_thread(request.execute)
        logger.info("Deleted calendar event %s", event_id)
        return f"Event {event_id} deleted successfully."


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------


_CALENDAR_ID_PROP = {"type": "string", "description": "Calendar ID (default: the configured calendar, usually 'primary')."}

_LIST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "List events from the user's Google Calendar. Use this when the user asks about "
        "their schedule, upcoming events, or calendar."
    ),
    "properties": {
        "time_min": {
            "type": "string",
            "description": "Start of the time range in ISO 8601 format (e.g. '2024-01-01T00:00:00Z'). Defaults to now.",
        },
        "time_max": {
            "type": "string",
            "description": "End of the time range in ISO 8601 format. Defaults to 7 days from now.",
        },
        "max_results": {"type": "number", "description": "Maximum number of events to return (default: 10)."},
        "calendar_id": _CALENDAR_ID_PROP,
    },
    "required": [],
}

_CREATE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Create a new event on the user's Google Calendar. Use this when the user asks to add, "
        "schedule, or create a calendar event."
    ),
    "properties": {
        "summary": {"type": "string", "description": "The title or summary of the event."},
        "start": {
            "type": "string",
            "description": "Start time in ISO 8601 format (e.g. '2024-01-15T10:00:00'). For all-day events use a date: '2024-01-15'.",
        },
        "end": {
            "type": "string",
            "description": "End time in ISO 8601 format (e.g. '2024-01-15T11:00:00'). For all-day events use a date: '2024-01-16'.",
        },
        "description": {"type": "string", "description": "Optional description or notes for the event."},
        "location": {"type": "string", "description": "Optional location for the event."},
        "calendar_id": _CALENDAR_ID_PROP,
        "timezone": {"type": "string", "description": "Timezone for the event (e.g. 'America/New_York'). Defaults to UTC."},
    },
    "required": ["summary", "start", "end"],
}

_UPDATE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Update an existing event on the user's Google Calendar. Use this when the user wants "
        "to modify, reschedule, or edit an event."
    ),
    "properties": {
        "event_id": {"type": "string", "description": "The ID of the event to update (obtained from list_calendar_events)."},
        "summary": {"type": "string", "description": "New title or summary for the event."},
        "start": {"type": "string", "description": "New start time in ISO 8601 format."},
        "end": {"type": "string", "description": "New end time in ISO 8601 format."},
        "description": {"type": "string", "description": "New description for the event."},
        "location": {"type": "string", "description": "New location for the event."},
        "calendar_id": _CALENDAR_ID_PROP,
        "timezone": {"type": "string", "description": "Timezone for the event (e.g. 'America/New_York')."},
    },
    "required": ["event_id"],
}

_DELETE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Delete an event from the user's Google Calendar. Use this when the user wants to remove or cancel an event."
    ),
    "properties": {
        "event_id": {"type": "string", "description": "The ID of the event to delete (obtained from list_calendar_events)."},
        "calendar_id": _CALENDAR_ID_PROP,
    },
    "required": ["event_id"],
}


def register_calendar_tools(registry: ToolRegistry, calendar: GoogleCalendar) -> None:
    """Register the four calendar tools. Only listing is read-only."""
    registry.register("list_calendar_events", calendar.list_events, _LIST_SCHEMA, read_only=True)
    registry.register("create_calendar_event", calendar.create_event, _CREATE_SCHEMA)
    registry.register("update_calendar_event", calendar.update_event, _UPDATE_SCHEMA)
    registry.register("delete_calendar_event", calendar.delete_event, _DELETE_SCHEMA)
