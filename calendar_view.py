"""
Calendar grouping for the schedule, day and upcoming views.
Recurring tasks are placed on a day by recurrence.is_due evaluated for that day, and count
as completed there only when that day is in their completed_dates.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from completion import is_completed_on
from date_utils import as_date, day_name, month_days
from models import Task
from recurrence import is_due


@dataclass(frozen=True)
class CalendarDay:
    date: date
    is_today: bool
    is_selected: bool
    is_past: bool
    task_count: int
    completed_count: int


@dataclass(frozen=True)
class DayGroup:
    date: date
    day_name: str
    days_from_now: int
    tasks: list[Task] = field(default_factory=list)


def occurs_on(task: Task, day: date) -> bool:
    """One-off tasks occur on their anchor date; recurring tasks whenever they are due."""
    if not task.recurring:
        return as_date(task.date) == day
    return is_due(task, day)


def completed_on(task: Task, day: date) -> bool:
    """Completion as of day: the flag for one-off tasks, completed_dates membership for recurring ones."""
    if not task.recurring:
        return task.completed
    return is_completed_on(task, day)


def as_of(task: Task, day: date) -> Task:
    """task with completed re-derived for day."""
    done = completed_on(task, day)
    return task if done == task.completed else task.model_copy(update={"completed": done})


def tasks_for_date(tasks: Iterable[Task], day: date) -> list[Task]:
    """Exact anchor-date match (day detail view)."""
    return [t for t in tasks if as_date(t.date) == day]


def tasks_due_on(tasks: Iterable[Task], day: date) -> list[Task]:
    """What happens on day: one-off tasks dated that day plus recurring tasks due that day."""
    return [t for t in tasks if occurs_on(t, day)]


def filter_by_title(tasks: Iterable[Task], query: str | None) -> list[Task]:
    needle = (query or "").strip().lower()
    if not needle:
        return list(tasks)
    return [t for t in tasks if needle in t.title.lower()]


def day_summary(tasks: Iterable[Task], day: date) -> tuple[int, int]:
    """(completed, total) among tasks dated exactly day."""
    on_day = tasks_for_date(tasks, day)
    return sum(1 for t in on_day if completed_on(t, day)), len(on_day)


def month_grid(
    tasks: Iterable[Task],
    year: int,
    month: int,
    today: date,
    selected: date | None = None,
) -> list[CalendarDay]:
    """One CalendarDay per day of the month with occurrence counts."""
    items = list(tasks)
    out: list[CalendarDay] = []
    for d in month_days(year, month):
        on_day = tasks_due_on(items, d)
        out.append(CalendarDay(
            date=d,
            is_today=d == today,
            is_selected=d == selected,
            is_past=d < today,
            task_count=len(on_day),
            completed_count=sum(1 for t in on_day if completed_on(t, d)),
        ))
    return out


def upcoming(tasks: Iterable[Task], today: date, days: int = 7) -> list[DayGroup]:
    """Tomorrow through today + days, grouped by day; days without tasks are left out."""
    items = list(tasks)
    groups: list[DayGroup] = []
    for offset in range(1, days + 1):
        d = today + timedelta(days=offset)
        on_day = sorted((as_of(t, d) for t in tasks_due_on(items, d)), key=lambda t: (t.time, t.priority))
        if on_day:
            groups.append(DayGroup(date=d, day_name=day_name(d), days_from_now=offset, tasks=on_day))
    return groups
