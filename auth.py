"""
Login session for the single local user. Holds the active profile and its derived
encryption key, and binds the task reconciler to that profile.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from encryption import derive_key
from models import Profile
from reconciler import TaskReconciler
from task_service import DuplicateProfileError, TaskStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    success: bool
    error: str | None = None


class Session:
    def __init__(self, store: Any, reconciler: TaskReconciler, salt: str):
        self.store = store
        self.reconciler = reconciler
        self._salt = salt
        self.current_profile: Profile | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.current_profile is not None

    async def _start(self, profile: Profile, password: str) -> None:
        key = await asyncio.to_thread(derive_key, password, self._salt)
        if self.current_profile is not None and self.current_profile.id != profile.id:
            self.reconciler.deactivate()
        self.current_profile = profile
        await self.reconciler.activate(profile.id, key)

    async def login(self, password: str) -> AuthResult:
        try:
            profile = await asyncio.to_thread(self.store.authenticate, password)
        except TaskStoreError as e:
            logger.warning("Login failed: %s", e)
            return AuthResult(success=False, error=str(e) or "Login failed")
        if profile is None:
            return AuthResult(success=False, error="Invalid password")
        await self._start(profile, password)
        logger.info("Logged in as profile %s", profile.id)
        return AuthResult(success=True)

    async def create_profile(self, name: str, password: str) -> AuthResult:
        try:
            profile = await asyncio.to_thread(self.store.create_profile, name, password)
        except (DuplicateProfileError, ValueError, TaskStoreError) as e:
            return AuthResult(success=False, error=str(e) or "Failed to create profile")
        await self._start(profile, password)
        return AuthResult(success=True)

    def logout(self) -> None:
        self.current_profile = None
        self.reconciler.deactivate()
