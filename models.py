"""Task, profile and change-feed models shared by the store, the materializer and the API."""
from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from recurrence import normalize_rule

RecurrenceRule = Literal["daily", "weekly", "monthly", "yearly", "custom"]

PRIORITY_LABELS = {1: "High", 2: "Medium", 3: "Low"}


class Task(BaseModel):
    """In-memory view of a task: plaintext text fields, derived completion."""

    id: str
    title: str
    description: str | None = None
    date: dt.date
    time: str = ""
    type: Literal["task", "event"] = "task"
    priority: int = Field(default=2, ge=1, le=3)
    recurring: bool = False
    recurrence_rule: RecurrenceRule | None = None
    completed_dates: list[str] = Field(default_factory=list)
    completed: bool = False
    profile_id: int | None = None
    created_at: str | None = None

    @property
    def priority_label(self) -> str:
        return PRIORITY_LABELS.get(self.priority, "Medium")


class NewTask(BaseModel):
    """Input of the add operation. Anchor date is required."""

    title: str = Field(min_length=1)
    description: str | None = None
    date: dt.date
    time: str = ""
    type: Literal["task", "event"] = "task"
    priority: int = Field(default=2, ge=1, le=3)
    recurring: bool = False
    recurrence_rule: RecurrenceRule | None = None
    completed: bool = False

    @field_validator("recurrence_rule", mode="before")
    @classmethod
    def _normalize_rule(cls, v: Any) -> Any:
        return normalize_rule(v) if isinstance(v, str) else v

    def to_record(self) -> dict[str, Any]:
        """Column values for a new row: rule only when recurring, empty completion history when recurring."""
        return {
            "title": self.title,
            "description": self.description or None,
            "date": self.date.isoformat(),
            "time": self.time,
            "type": self.type,
            "priority": self.priority,
            "recurring": self.recurring,
            "recurrence_rule": self.recurrence_rule if self.recurring else None,
            "completed_dates": [] if self.recurring else None,
            "completed": False if self.recurring else self.completed,
        }


class Profile(BaseModel):
    id: int
    name: str
    created_at: str | None = None


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One change-feed notification. For DELETE, record carries at least the id."""

    kind: ChangeKind
    record: dict[str, Any]
