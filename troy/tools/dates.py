"""Date context for the system prompt and the compute_date_range tool.

Weeks run Monday to Sunday. Everything works on local calendar dates so
the model never has to do date arithmetic itself.
"""

from __future__ import annotations

import calendar
import json
import re
from datetime import date, timedelta
from typing import Any

from troy.agent.dispatch import ToolRegistry


def _monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def week_context(today: date | None = None) -> str:
    """Three-line block naming today, this week and next week."""
    today = today or date.today()
    monday = _monday_of(today)
    next_monday = monday + timedelta(days=7)
    return "\n".join([
        f"Today is {today.strftime('%A')}, {today.isoformat()}.",
        f"This week: Monday {monday.isoformat()} to Sunday {(monday + timedelta(days=6)).isoformat()}.",
        f"Next week: Monday {next_monday.isoformat()} to Sunday {(monday + timedelta(days=13)).isoformat()}.",
    ])


def _month_range(year: int, month: int) -> tuple[date, date]:
    if month > 12:
        year, month = year + 1, month - 12
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def compute_date_range(
    period: str | None = None,
    start: str | None = None,
    offset_days: int | None = None,
    *,
    today: date | None = None,
) -> dict[str, str]:
    """Resolve a named period, or start + offset_days, into ISO start/end dates.

    Period names ignore case, spaces, dashes and underscores
    ("this_week", "Next Week"). Unknown periods and missing arguments fall
    back to the seven days starting today.
    """
    today = today or date.today()

    def _range(first: date, last: date) -> dict[str, str]:
        return {"start": first.isoformat(), "end": last.isoformat()}

    if period:
        key = re.sub(r"[_\s-]+", "", period.lower())
        if key == "today":
            return _range(today, today)
        if key == "tomorrow":
            tomorrow = today + timedelta(days=1)
            return _range(tomorrow, tomorrow)
        if key == "thisweek":
            monday = _monday_of(today)
            return _range(monday, monday + timedelta(days=6))
        if key == "nextweek":
            monday = _monday_of(today) + timedelta(days=7)
            return _range(monday, monday + timedelta(days=6))
        if key == "thismonth":
            return _range(*_month_range(today.year, today.month))
        if key == "nextmonth":
            return _range(*_month_range(today.year, today.month + 1))
        if key == "next7days":
            return _range(today, today + timedelta(days=6))
        if key in ("next14days", "nexttwoweeks"):
            return _range(today, today + timedelta(days=13))
        return _range(today, today + timedelta(days=6))

    if start and offset_days is not None:
        base = date.fromisoformat(start)
        return _range(base, base + timedelta(days=int(offset_days)))

    return _range(today, today + timedelta(days=6))


_DATE_RANGE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Compute exact start/end dates for a named period or a start date plus offset. "
        "Use this instead of calculating dates manually."
    ),
    "properties": {
        "period": {
            "type": "string",
            "description": (
                "A named period: 'today', 'tomorrow', 'this_week', 'next_week', "
                "'this_month', 'next_month', 'next_7_days', 'next_14_days'."
            ),
        },
        "start": {
            "type": "string",
            "description": "An explicit start date in YYYY-MM-DD format. Used together with offset_days.",
        },
        "offset_days": {
            "type": "number",
            "description": "Number of days to add to start to get the end date. Used together with start.",
        },
    },
    "required": [],
}


def register_date_tools(registry: ToolRegistry) -> None:
    """Register compute_date_range."""

    async def _compute(period: str | None = None, start: str | None = None, offset_days: int | None = None) -> str:
        return json.dumps(compute_date_range(period, start, offset_days))

    registry.register("compute_date_range", _compute, _DATE_RANGE_SCHEMA, read_only=True)
