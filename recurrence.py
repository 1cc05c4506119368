"""
Recurrence evaluation: decides whether a recurring task has an occurrence on a given calendar day.
This is the only place that answers "is this task due"; every view and the toggle check call in here.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

from date_utils import as_date, today

RECURRENCE_RULES: tuple[str, ...] = ("daily", "weekly", "monthly", "yearly", "custom")


def normalize_rule(rule: str | None) -> str | None:
    """Lower-case known tags; unknown or legacy values become 'custom'; empty stays None."""
    if rule is None or not str(rule).strip():
        return None
    normalized = str(rule).strip().lower()
    return normalized if normalized in RECURRENCE_RULES else "custom"


def anchor_reached(task: Any, day: date | datetime | str | None = None) -> bool:
    """True when the task's anchor date is on or before day (default: today)."""
    anchor = as_date(task.date)
    ref = as_date(day) if day is not None else today()
    return anchor is not None and ref is not None and anchor <= ref


def is_due(task: Any, day: date | datetime | str | None = None) -> bool:
    """
    Whether the task's recurrence rule yields an occurrence on day (default: today).

    Non-recurring tasks, and recurring ones without a rule, are never due: they are
    scheduled on their exact date instead. Anchor and day are compared as calendar dates.
    Monthly rules do not clamp: an anchor on the 31st never matches a 30-day month.
    """
    if not task.recurring or not task.recurrence_rule:
        return False
    anchor = as_date(task.date)
    ref = as_date(day) if day is not None else today()
    if anchor is None or ref is None:
        return False
    if anchor > ref:
        return False

    rule = normalize_rule(task.recurrence_rule)
    if rule == "daily":
        return True
    if rule == "weekly":
        return anchor.weekday() == ref.weekday()
    if rule == "monthly":
        return anchor.day == ref.day
    if rule == "yearly":
        return anchor.day == ref.day and anchor.month == ref.month
    # custom: no client-side encoding, due every day from the anchor on
    return True
