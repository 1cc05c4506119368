"""
Live change-feed subscription for one profile, as an explicit resource:
idle -> connecting -> active, or connecting -> retrying -> connecting ... -> closed.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from models import ChangeEvent
from task_service import TaskStoreError

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    RETRYING = "retrying"
    CLOSED = "closed"


class LiveSubscription:
    """
    Subscribes on_event to store changes for profile_id.

    A failed subscribe is retried up to max_retries times; retry n waits n * backoff_seconds.
    When retries run out the subscription closes quietly and no more events arrive.
    """

    def __init__(
        self,
        store: Any,
        profile_id: int,
        on_event: Callable[[ChangeEvent], None],
        *,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.profile_id = profile_id
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.attempts = 0
        self.retries = 0
        self._on_event = on_event
        self._sleep = sleep
        self._unsubscribe: Callable[[], None] | None = None
        self._state = SubscriptionState.IDLE

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is SubscriptionState.CLOSED

    async def start(self) -> bool:
        """Connect, retrying on feed errors. Returns True once active; a second call while pending is a no-op."""
        if self._state is not SubscriptionState.IDLE:
            return self._state is SubscriptionState.ACTIVE
        self._state = SubscriptionState.CONNECTING
        while True:
            self.attempts += 1
            try:
                unsubscribe = self.store.subscribe(self.profile_id, self._on_event)
            except TaskStoreError as e:
                if self.closed:
                    return False
                if self.retries >= self.max_retries:
                    logger.warning(
                        "Giving up live updates for profile %s after %d attempts: %s",
                        self.profile_id, self.attempts, e,
                    )
                    self._state = SubscriptionState.CLOSED
                    return False
                self.retries += 1
                delay = self.retries * self.backoff_seconds
                logger.info("Subscribe for profile %s failed (%s); retry %d in %.1fs", self.profile_id, e, self.retries, delay)
                self._state = SubscriptionState.RETRYING
                await self._sleep(delay)
                if self.closed:
                    return False
                self._state = SubscriptionState.CONNECTING
                continue
            if self.closed:
                # closed while connecting
                unsubscribe()
                return False
            self._unsubscribe = unsubscribe
            self._state = SubscriptionState.ACTIVE
            self.retries = 0
            logger.info("Live updates active for profile %s", self.profile_id)
            return True

    def close(self) -> None:
        """Release the store subscription. Idempotent; a pending retry sees CLOSED and stops."""
        self._state = SubscriptionState.CLOSED
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
