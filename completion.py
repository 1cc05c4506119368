"""
Per-day completion bookkeeping for recurring tasks, plus the scalar flip for one-off tasks.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable

from date_utils import iso, today
from recurrence import is_due


@dataclass(frozen=True)
class ToggleResult:
    """Outcome of an accepted toggle: new completion state and the fields to persist."""

    completed: bool
    completed_dates: list[str] | None = None
    changes: dict[str, Any] = field(default_factory=dict)


def is_completed_on(task: Any, day: date | datetime | str) -> bool:
    return iso(day) in (task.completed_dates or [])


def toggle_dates(completed_dates: Iterable[str] | None, day: date | datetime | str) -> tuple[list[str], bool]:
    """Remove day if present, else add it. Result is sorted ascending and free of duplicates."""
    key = iso(day)
    dates = set(completed_dates or [])
    if key in dates:
        dates.discard(key)
        return sorted(dates), False
    dates.add(key)
    return sorted(dates), True


def plan_toggle(task: Any, day: date | datetime | str | None = None) -> ToggleResult | None:
    """
    Compute the toggle of task on day (default: today) without applying it.
    Returns None when a recurring task is not due that day; the caller must treat that as rejected.
    """
    ref = day if day is not None else today()
    if not task.recurring:
        flipped = not task.completed
        return ToggleResult(completed=flipped, changes={"completed": flipped})
    if not is_due(task, ref):
        return None
    dates, completed = toggle_dates(task.completed_dates, ref)
    return ToggleResult(completed=completed, completed_dates=dates, changes={"completed_dates": dates})
