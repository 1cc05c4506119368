"""Configuration load/save for lakron."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CONFIG_PATH = Path(__file__).resolve().parent / "config.json"


class AppConfig(BaseModel):
    """Persisted application configuration."""

    database_path: str = Field(default="", description="Path to SQLite database file; empty = project dir / lakron.db")
    encryption_salt: str = Field(default="fallback-salt", description="Salt for deriving the per-profile encryption key from the password")
    web_ui_host: str = Field(default="127.0.0.1", description="Interface the web API binds to")
    web_ui_port: int = Field(default=8081, ge=1, le=65535, description="Port for the web API")
    subscribe_max_retries: int = Field(default=3, ge=0, description="Live subscription retries before giving up")
    subscribe_backoff_seconds: float = Field(default=2.0, gt=0, description="Retry n waits n * this many seconds")
    upcoming_days: int = Field(default=7, ge=1, le=60, description="Days ahead shown in the upcoming view")
    debug: bool = Field(default=False, description="Log every API request")

    def to_save_dict(self) -> dict[str, Any]:
        return self.model_dump()

    @classmethod
    def load(cls) -> "AppConfig":
        if not CONFIG_PATH.exists():
            return cls()
        raw = json.loads(CONFIG_PATH.read_text())
        return cls.model_validate(raw)

    def save(self) -> None:
        CONFIG_PATH.write_text(json.dumps(self.to_save_dict(), indent=2))


def load() -> AppConfig:
    """Load config from disk. Convenience alias for AppConfig.load()."""
    return AppConfig.load()
