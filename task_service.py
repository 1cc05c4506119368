"""
Task Service layer: all profile and task mutations go through here.
Owns the durable records and publishes a change feed (INSERT/UPDATE/DELETE) per profile after each commit.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
import threading
from datetime import datetime, timezone
from itertools import count
from pathlib import Path
from typing import Any, Callable, Mapping

from ulid import ULID

from database import get_connection, init_database
from date_utils import iso
from encryption import decrypt, encrypt
from models import ChangeEvent, ChangeKind, NewTask, Profile, Task
from recurrence import normalize_rule
from task_view import parse_completed_dates, to_task

logger = logging.getLogger("task_service")

PRIORITY_MIN, PRIORITY_MAX = 1, 3
TASK_TYPES = frozenset({"task", "event"})
_PASSWORD_ITERATIONS = 200_000

# Columns update_task may write; title/description are not editable here (no key at this layer)
UPDATABLE_FIELDS = frozenset({
    "completed", "completed_dates", "date", "time", "type", "priority", "recurring", "recurrence_rule",
})

Listener = Callable[[ChangeEvent], None]


class TaskStoreError(RuntimeError):
    """Persistence or change-feed failure."""


class TaskNotFoundError(TaskStoreError):
    pass


class SubscriptionError(TaskStoreError):
    """The change feed refused or lost a subscription."""


class DuplicateProfileError(ValueError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _hash_password(password: str, salt: str | None = None) -> tuple[str, str]:
    """Salted PBKDF2 hash for password. Returns (hash_hex, salt_hex)."""
    if salt is None:
        salt = secrets.token_hex(16)
    hashed = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), _PASSWORD_ITERATIONS)
    return hashed.hex(), salt


def _task_row_to_dict(row: Any) -> dict[str, Any]:
    d = dict(row)
    d["recurring"] = bool(d.get("recurring"))
    d["completed"] = bool(d.get("completed"))
    d["completed_dates"] = parse_completed_dates(d.get("completed_dates")) if d["recurring"] else None
    return d


def _profile_row(row: Any) -> Profile:
    return Profile(id=row["id"], name=row["name"], created_at=row["created_at"])


def _column_value(field: str, value: Any) -> Any:
    """Validate and convert one update_task field to its column value."""
    if field in ("completed", "recurring"):
        return 1 if value else 0
    if field == "completed_dates":
        return json.dumps(parse_completed_dates(value)) if value is not None else None
    if field == "date":
        return iso(value)
    if field == "priority":
        p = int(value)
        if p < PRIORITY_MIN or p > PRIORITY_MAX:
            raise ValueError(f"priority must be {PRIORITY_MIN}-{PRIORITY_MAX}")
        return p
    if field == "type":
        if value not in TASK_TYPES:
            raise ValueError(f"type must be one of {sorted(TASK_TYPES)}")
        return value
    if field == "recurrence_rule":
        return normalize_rule(value)
    return "" if value is None else str(value)


class TaskStore:
    """SQLite-backed profiles/tasks plus an in-process change feed. Safe to call from worker threads."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = init_database(Path(db_path) if db_path else None)
        self._lock = threading.Lock()
        self._listeners: dict[int, dict[int, Listener]] = {}
        self._listener_ids = count(1)
        self._closed = False

    def _connect(self) -> sqlite3.Connection:
        return get_connection(self.db_path)

    # --- Profiles ---

    def create_profile(self, name: str, password: str) -> Profile:
        name = (name or "").strip()
        if not name:
            raise ValueError("Profile name is required")
        if not password:
            raise ValueError("Password is required")
        pw_hash, salt = _hash_password(password)
        conn = self._connect()
        try:
            if conn.execute("SELECT 1 FROM profiles WHERE name = ?", (name,)).fetchone():
                raise DuplicateProfileError("Profile with this name already exists")
            cur = conn.execute(
                "INSERT INTO profiles (name, password_hash, password_salt, created_at) VALUES (?, ?, ?, ?)",
                (name, pw_hash, salt, _now_iso()),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM profiles WHERE id = ?", (cur.lastrowid,)).fetchone()
        except sqlite3.IntegrityError as e:
            raise DuplicateProfileError("Profile with this name already exists") from e
        finally:
            conn.close()
        logger.info("[task_service] created profile %s (%s)", row["id"], name)
        return _profile_row(row)

    def authenticate(self, password: str) -> Profile | None:
        """Return the first profile whose password matches, or None."""
        if not password:
            return None
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM profiles ORDER BY id").fetchall()
        finally:
            conn.close()
        for row in rows:
            candidate, _ = _hash_password(password, row["password_salt"])
            if hmac.compare_digest(candidate, row["password_hash"]):
                return _profile_row(row)
        logger.info("[task_service] no profile matched the supplied password")
        return None

    def list_profiles(self) -> list[Profile]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM profiles ORDER BY name").fetchall()
        finally:
            conn.close()
        return [_profile_row(r) for r in rows]

    def get_profile(self, profile_id: int) -> Profile | None:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        finally:
            conn.close()
        return _profile_row(row) if row else None

    # --- Tasks ---

    def list_tasks(self, profile_id: int, key: str | None = None) -> list[dict[str, Any]]:
        """Stored records for profile ordered by date then time. Text is decrypted when key is given."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE profile_id = ? ORDER BY date ASC, time ASC",
                (profile_id,),
            ).fetchall()
        finally:
            conn.close()
        out = [_task_row_to_dict(r) for r in rows]
        if key:
            for d in out:
                d["title"] = decrypt(d["title"], key)
                d["description"] = decrypt(d["description"], key)
        return out

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        finally:
            conn.close()
        return _task_row_to_dict(row) if row else None

    def create_task(self, task: NewTask | Mapping[str, Any], profile_id: int, key: str) -> Task:
        """Encrypt and insert a new task. Id and created_at are assigned here."""
        new = task if isinstance(task, NewTask) else NewTask.model_validate(task)
        values = new.to_record()
        tid = str(ULID())
        conn = self._connect()
        try:
            if not conn.execute("SELECT 1 FROM profiles WHERE id = ?", (profile_id,)).fetchone():
                raise TaskStoreError("Profile does not exist in database")
            conn.execute(
                """INSERT INTO tasks (
                    id, profile_id, title, description, date, time, type, priority,
                    recurring, recurrence_rule, completed_dates, completed, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    tid, profile_id,
                    encrypt(values["title"], key),
                    encrypt(values["description"], key) if values["description"] else None,
                    values["date"], values["time"], values["type"], values["priority"],
                    1 if values["recurring"] else 0, values["recurrence_rule"],
                    json.dumps(values["completed_dates"]) if values["completed_dates"] is not None else None,
                    1 if values["completed"] else 0,
                    _now_iso(),
                ),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (tid,)).fetchone()
        finally:
            conn.close()
        record = _task_row_to_dict(row)
        self._publish(profile_id, ChangeEvent(kind=ChangeKind.INSERT, record=record))
        return to_task(record, lambda v: decrypt(v, key))

    def update_task(self, task_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Write the given fields only. Returns the stored record."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {sorted(unknown)}")
        if not changes:
            raise ValueError("no fields to update")
        cols = list(changes)
        params = [_column_value(c, changes[c]) for c in cols]
        conn = self._connect()
        try:
            cur = conn.execute(
                f"UPDATE tasks SET {', '.join(f'{c} = ?' for c in cols)} WHERE id = ?",
                (*params, task_id),
            )
            if cur.rowcount == 0:
                raise TaskNotFoundError(f"Task not found: {task_id}")
            conn.commit()
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        finally:
            conn.close()
        record = _task_row_to_dict(row)
        logger.info("[task_service] update_task %s fields: %s", task_id, ", ".join(cols))
        self._publish(record["profile_id"], ChangeEvent(kind=ChangeKind.UPDATE, record=record))
        return record

    def delete_task(self, task_id: str) -> bool:
        """Delete a task. Returns True if deleted, False if not found."""
        conn = self._connect()
        try:
            row = conn.execute("SELECT id, profile_id FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if not row:
                return False
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
        finally:
            conn.close()
        self._publish(row["profile_id"], ChangeEvent(kind=ChangeKind.DELETE, record=dict(row)))
        return True

    # --- Change feed ---

    def subscribe(self, profile_id: int, on_event: Listener) -> Callable[[], None]:
        """Register on_event for changes to profile's tasks. Returns the unsubscribe function."""
        with self._lock:
            if self._closed:
                raise SubscriptionError("change feed is closed")
            lid = next(self._listener_ids)
            self._listeners.setdefault(profile_id, {})[lid] = on_event

        def unsubscribe() -> None:
            with self._lock:
                channel = self._listeners.get(profile_id)
                if channel is not None:
                    channel.pop(lid, None)
                    if not channel:
                        del self._listeners[profile_id]

        return unsubscribe

    def _publish(self, profile_id: int, event: ChangeEvent) -> None:
        with self._lock:
            listeners = list(self._listeners.get(profile_id, {}).values())
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                # A broken listener must not fail the write that already committed
                logger.exception("change listener failed for profile %s", profile_id)

    def connection_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "closed": self._closed,
                "channels": {f"tasks-changes-{pid}": len(ls) for pid, ls in self._listeners.items()},
            }

    def close(self) -> None:
        """Shut the change feed: drop every listener and refuse new subscriptions."""
        with self._lock:
            self._closed = True
            self._listeners.clear()
