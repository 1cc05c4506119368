"""
SQLite database initialization and connection for Lakron.
Self-bootstrapping: creates DB file, tables and indexes on first run.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path

# Default DB path: project directory
_DEFAULT_DB_PATH = Path(__file__).resolve().parent / "lakron.db"

# Wait up to this many seconds for locks (web worker threads share the file)
_CONNECT_TIMEOUT = 30.0

_SCHEMA = """
-- Profiles: one password per profile; password stored as PBKDF2 hash + salt
CREATE TABLE IF NOT EXISTS profiles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    password_salt TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- Tasks: title/description are ciphertext
-- date: anchor date YYYY-MM-DD; time: HH:MM (display/sort only)
-- completed_dates: JSON array of YYYY-MM-DD, used only when recurring = 1
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    profile_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    date TEXT NOT NULL,
    time TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL DEFAULT 'task' CHECK (type IN ('task', 'event')),
    priority INTEGER NOT NULL DEFAULT 2 CHECK (priority >= 1 AND priority <= 3),
    recurring INTEGER NOT NULL DEFAULT 0,
    recurrence_rule TEXT,
    completed_dates TEXT,
    completed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_tasks_profile_date ON tasks(profile_id, date, time);
"""


def get_db_path() -> Path:
    """Return the database file path (from config if available)."""
    try:
        from config import load as load_config
        c = load_config()
        if c.database_path:
            return Path(c.database_path)
    except (OSError, ValueError):
        pass
    return _DEFAULT_DB_PATH


def init_database(path: Path | None = None) -> Path:
    """
    Ensure the database exists and is initialized. Creates file and all tables/indexes.
    Returns the path to the database file.
    """
    db_path = path or get_db_path()
    db_path = db_path.resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=_CONNECT_TIMEOUT)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(_SCHEMA)
    # Migration: completed_dates arrived after the first tasks table
    try:
        conn.execute("ALTER TABLE tasks ADD COLUMN completed_dates TEXT")
    except sqlite3.OperationalError as e:
        if "duplicate column" not in str(e).lower():
            raise
    conn.commit()
    conn.close()
    return db_path


def get_connection(path: Path | None = None) -> sqlite3.Connection:
    """Return a connection to the database. Call init_database first if needed."""
    db_path = path or get_db_path()
    conn = sqlite3.connect(str(db_path), timeout=_CONNECT_TIMEOUT)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = sqlite3.Row
    return conn


def migrate() -> Path:
    """Run database init + migrations. Use this to migrate manually: python -m database"""
    return init_database()


if __name__ == "__main__":
    p = migrate()
    print("Database migrated:", p)
