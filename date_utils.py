"""
Calendar-date helpers. All dates are local calendar dates; time-of-day is never significant.
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta

# Already ISO date
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def today() -> date:
    """Caller's current local date."""
    return date.today()


def as_date(value: date | datetime | str | None) -> date | None:
    """
    Normalize to a calendar date (midnight), or None if empty/invalid.
    Accepts date, datetime (time dropped), "YYYY-MM-DD" and "YYYY-MM-DDTHH:MM..." strings.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    part = str(value).strip()[:10]
    if not _ISO_DATE.match(part):
        return None
    try:
        return date.fromisoformat(part)
    except ValueError:
        return None


def iso(value: date | datetime | str) -> str:
    """YYYY-MM-DD for any accepted date input; raises ValueError if it is not a date."""
    d = as_date(value)
    if d is None:
        raise ValueError(f"not a calendar date: {value!r}")
    return d.isoformat()


def resolve_relative_date(value: str | None, reference: date | None = None) -> str | None:
    """
    Convert a date string to YYYY-MM-DD.
    - If value is already YYYY-MM-DD, return it.
    - If value is 'today', 'tomorrow', 'yesterday', 'next week', 'in N days' or a weekday name, return the resolved date.
    - Otherwise return None (caller decides whether that is an error).
    """
    if not value or not str(value).strip():
        return None
    raw = str(value).strip().lower()
    if _ISO_DATE.match(raw):
        return raw if as_date(raw) else None
    base = reference or today()
    if raw == "today":
        return base.isoformat()
    if raw == "tomorrow":
        return (base + timedelta(days=1)).isoformat()
    if raw == "yesterday":
        return (base - timedelta(days=1)).isoformat()
    if raw == "next week" or raw == "in a week":
        return (base + timedelta(days=7)).isoformat()
    # "in N days"
    m = re.match(r"^in\s+(\d+)\s+days?$", raw)
    if m:
        return (base + timedelta(days=int(m.group(1)))).isoformat()
    # Day names: next occurrence of that weekday, never today
    if raw in WEEKDAYS:
        days_ahead = (WEEKDAYS.index(raw) - base.weekday()) % 7
        if days_ahead == 0:
            days_ahead = 7
        return (base + timedelta(days=days_ahead)).isoformat()
    return None


def day_name(d: date) -> str:
    """'Monday', 'Tuesday', ..."""
    return WEEKDAYS[d.weekday()].capitalize()


def month_days(year: int, month: int) -> list[date]:
    """Every date of the given month, in order."""
    first = date(year, month, 1)
    nxt = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return [first + timedelta(days=i) for i in range((nxt - first).days)]
