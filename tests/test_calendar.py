"""Tests for the Google Calendar tools (troy/tools/calendar.py).

The Calendar v3 service is a MagicMock; request objects expose
.execute() like the real discovery client.
"""

from unittest.mock import MagicMock

import pytest

from troy.agent.dispatch import ToolRegistry, Trust
from troy.tools.calendar import (
    CalendarNotConfigured,
    GoogleCalendar,
    format_date_with_day,
    is_date_only,
    make_event_time,
    register_calendar_tools,
)


def _service(**results) -> MagicMock:
    """Service whose events().<method>(...).execute() returns results[method]."""
    service = MagicMock()
    events = service.events.return_value
    for method, result in results.items():
        getattr(events, method).return_value.execute.return_value = result
    return service


class TestFormatting:
    def test_date_only(self):
        assert format_date_with_day("2026-02-23") == "Monday, 2026-02-23"

    def test_utc_datetime_in_winter(self):
        assert format_date_with_day("2026-02-23T11:00:00Z") == "Monday, 2026-02-23 at 11am"

    def test_minutes_shown(self):
        assert format_date_with_day("2026-02-23T11:30:00+00:00") == "Monday, 2026-02-23 at 11:30am"

    def test_summer_time_conversion(self):
        assert format_date_with_day("2026-07-04T10:00:00Z") == "Saturday, 2026-07-04 at 11am"

    def test_afternoon_and_midnight(self):
        assert format_date_with_day("2026-02-23T15:05:00") == "Monday, 2026-02-23 at 3:05pm"
        assert format_date_with_day("2026-02-23T00:00:00") == "Monday, 2026-02-23 at 12am"

    def test_other_timezone(self):
        assert format_date_with_day("2026-02-23T11:00:00Z", "America/New_York") == "Monday, 2026-02-23 at 6am"

    def test_unparseable_unchanged(self):
        assert format_date_with_day("Unknown") == "Unknown"

    def test_make_event_time(self):
        assert is_date_only("2026-02-23")
        assert make_event_time("2026-02-23") == {"date": "2026-02-23"}
        assert make_event_time("2026-02-23T10:00:00") == {"dateTime": "2026-02-23T10:00:00", "timeZone": "UTC"}
        assert make_event_time("2026-02-23T10:00:00", "Europe/Paris")["timeZone"] == "Europe/Paris"


class TestListEvents:
    @pytest.mark.asyncio
    async def test_events_formatted(self, settings):
        service = _service(list={
            "items": [
                {
                    "id": "ev1",
                    "summary": "Dentist",
                    "start": {"dateTime": "2026-02-23T11:00:00Z"},
                    "end": {"dateTime": "2026-02-23T11:30:00Z"},
                    "location": "High Street",
                },
                {"id": "ev2", "start": {"date": "2026-02-24"}, "end": {"date": "2026-02-25"}},
            ]
        })
        calendar = GoogleCalendar(settings, service=service)

        text = await calendar.list_events("2026-02-23T00:00:00Z", "2026-03-01T00:00:00Z")

        assert text == (
            "Found 2 event(s):\n\n"
            "ID: ev1\nTitle: Dentist\nStart: Monday, 2026-02-23 at 11am\n"
            "End: Monday, 2026-02-23 at 11:30am\nLocation: High Street\n\n"
            "ID: ev2\nTitle: (no title)\nStart: Tuesday, 2026-02-24\nEnd: Wednesday, 2026-02-25"
        )
        kwargs = service.events.return_value.list.call_args.kwargs
        assert kwargs["calendarId"] == "primary"
        assert kwargs["singleEvents"] is True
        assert kwargs["orderBy"] == "startTime"

    @pytest.mark.asyncio
    async def test_no_events(self, settings):
        calendar = GoogleCalendar(settings, service=_service(list={"items": []}))
        assert await calendar.list_events() == "No events found in the specified time range."

    @pytest.mark.asyncio
    async def test_missing_credentials(self, settings):
        with pytest.raises(CalendarNotConfigured):
            await GoogleCalendar(settings).list_events()


class TestWrites:
    @pytest.fixture
    def writable(self, settings):
        return settings.model_copy(update={"calendar_allow_writes": True})

    @pytest.mark.asyncio
    async def test_writes_disabled_through_dispatch(self, settings):
        service = _service()
        registry = ToolRegistry(Trust.TRUSTED)
        register_calendar_tools(registry, GoogleCalendar(settings, service=service))

        result = await registry.dispatch(
            "create_calendar_event",
            '{"summary": "Lunch", "start": "2026-02-23T12:00:00", "end": "2026-02-23T13:00:00"}',
        )

        assert result.is_error is True
        assert "Calendar edits are disabled" in result.content
        service.events.return_value.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_all_day(self, writable):
        service = _service(insert={"id": "new1", "summary": "Holiday", "htmlLink": "https://cal/new1"})
        calendar = GoogleCalendar(writable, service=service)

        text = await calendar.create_event("Holiday", "2026-08-01", "2026-08-02", location="Beach")

        assert text == "Event created successfully.\nID: new1\nTitle: Holiday\nLink: https://cal/new1"
        body = service.events.return_value.insert.call_args.kwargs["body"]
        assert body == {
            "summary": "Holiday",
            "start": {"date": "2026-08-01"},
            "end": {"date": "2026-08-02"},
            "location": "Beach",
        }

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, writable):
        existing = {"id": "ev1", "summary": "Old", "start": {"date": "2026-02-23"}, "end": {"date": "2026-02-24"}}
        service = _service(get=existing, update={"id": "ev1", "summary": "New"})
        calendar = GoogleCalendar(writable, service=service)

        text = await calendar.update_event("ev1", summary="New")

        assert text == "Event updated successfully.\nID: ev1\nTitle: New"
        body = service.events.return_value.update.call_args.kwargs["body"]
        assert body["summary"] == "New"
        assert body["start"] == {"date": "2026-02-23"}

    @pytest.mark.asyncio
    async def test_delete(self, writable):
        service = _service(delete="")
        calendar = GoogleCalendar(writable, service=service)

        assert await calendar.delete_event("ev9") == "Event ev9 deleted successfully."
        service.events.return_value.delete.assert_called_once_with(calendarId="primary", eventId="ev9")


class TestRegistration:
    def test_only_listing_offered_to_untrusted(self, settings):
        registry = ToolRegistry(Trust.UNTRUSTED)
        with pytest.raises(ValueError):
            register_calendar_tools(registry, GoogleCalendar(settings, service=_service()))
        assert registry.names == ["list_calendar_events"]
