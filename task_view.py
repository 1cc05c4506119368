"""
Materialize stored task records into view Tasks: decrypted text, normalized rule,
completion derived for the reference day, invisible recurring tasks dropped.
"""
from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from completion import is_completed_on
from date_utils import as_date, today as local_today
from models import Task
from recurrence import anchor_reached, is_due, normalize_rule

logger = logging.getLogger(__name__)

Decrypt = Callable[[str], str]


def _safe_decrypt(value: str | None, decrypt: Decrypt | None) -> str | None:
    if not value or decrypt is None:
        return value
    try:
        return decrypt(value) or value
    except Exception:
        # Unreadable text is still shown; the task must not disappear
        return value


def parse_completed_dates(raw: Any) -> list[str]:
    """Stored JSON text, list or None -> sorted unique ISO dates (non-dates dropped)."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    if not isinstance(raw, (list, tuple, set)):
        return []
    out = {d.isoformat() for d in (as_date(v) for v in raw) if d is not None}
    return sorted(out)


def is_visible(task: Task, today: date) -> bool:
    """One-off tasks are always kept (date filtering is a view concern); recurring ones only when they apply today."""
    if not task.recurring:
        return True
    if task.recurrence_rule == "daily" and anchor_reached(task, today):
        return True
    return is_due(task, today)


def derive_completed(task: Task, today: date) -> bool:
    """Completion for today. One-off: persisted flag. Recurring: membership of today in completed_dates."""
    if not task.recurring:
        return task.completed
    if task.recurrence_rule == "daily" and anchor_reached(task, today):
        return is_completed_on(task, today)
    return is_completed_on(task, today) if is_due(task, today) else False


def to_task(record: Mapping[str, Any], decrypt: Decrypt | None = None) -> Task | None:
    """Decrypt and normalize a stored record without any day-dependent derivation."""
    data = dict(record)
    recurring = bool(data.get("recurring"))
    dates = data.get("completed_dates", data.get("completedDates"))
    try:
        return Task.model_validate({
            "id": str(data["id"]),
            "title": _safe_decrypt(data.get("title"), decrypt) or "",
            "description": _safe_decrypt(data.get("description"), decrypt) or None,
            "date": as_date(data.get("date")),
            "time": data.get("time") or "",
            "type": data.get("type") or "task",
            "priority": data.get("priority") or 2,
            "recurring": recurring,
            "recurrence_rule": normalize_rule(data.get("recurrence_rule")) if recurring else None,
            "completed_dates": parse_completed_dates(dates) if recurring else [],
            "completed": bool(data.get("completed")),
            "profile_id": data.get("profile_id"),
            "created_at": data.get("created_at"),
        })
    except (KeyError, ValidationError) as e:
        logger.warning("Skipping malformed task record %s: %s", data.get("id"), e)
        return None


def materialize(
    record: Mapping[str, Any],
    decrypt: Decrypt | None = None,
    today: date | None = None,
) -> Task | None:
    """Stored record -> view Task for today, or None when it should not be shown today."""
    ref = today or local_today()
    task = to_task(record, decrypt)
    if task is None or not is_visible(task, ref):
        return None
    return task.model_copy(update={"completed": derive_completed(task, ref)})
