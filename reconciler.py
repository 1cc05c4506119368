"""
Reconciliation of the in-memory task collection for the active profile.

The collection is seeded by a bulk load and kept current by the store's change feed.
Every mutation (bulk load, feed event, optimistic toggle, revert) is a pure function of the
current snapshot applied through TaskReconciler._commit, so transitions never interleave.
Feed events are queued in arrival order and applied one at a time by a single consumer.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from calendar_view import filter_by_title
from completion import plan_toggle
from date_utils import today as local_today
from encryption import decrypt as decrypt_text
from live_subscription import LiveSubscription
from models import ChangeEvent, ChangeKind, NewTask, Task
from task_view import Decrypt, derive_completed, materialize

logger = logging.getLogger(__name__)

Tasks = tuple[Task, ...]


# --- Reducers ---

def apply_bulk_load(records: Iterable[Mapping[str, Any]], decrypt: Decrypt | None, today: date) -> Tasks:
    out = (materialize(r, decrypt, today) for r in records)
    return tuple(t for t in out if t is not None)


def apply_insert(tasks: Tasks, record: Mapping[str, Any], decrypt: Decrypt | None, today: date) -> Tasks:
    """Known id: duplicate delivery, ignored. Otherwise appended when visible."""
    rid = str(record.get("id"))
    if any(t.id == rid for t in tasks):
        return tasks
    task = materialize(record, decrypt, today)
    return tasks if task is None else tasks + (task,)


def apply_update(tasks: Tasks, record: Mapping[str, Any], decrypt: Decrypt | None, today: date) -> Tasks:
    """Visible: replace by id (append if missing). No longer visible: remove."""
    rid = str(record.get("id"))
    task = materialize(record, decrypt, today)
    if task is None:
        return apply_delete(tasks, record)
    if any(t.id == rid for t in tasks):
        return replace_task(tasks, task)
    return tasks + (task,)


def apply_delete(tasks: Tasks, record: Mapping[str, Any]) -> Tasks:
    rid = str(record.get("id"))
    return tuple(t for t in tasks if t.id != rid)


def replace_task(tasks: Tasks, task: Task) -> Tasks:
    """Swap the entry with task.id for task; absent ids are left absent."""
    return tuple(task if t.id == task.id else t for t in tasks)


def apply_event(tasks: Tasks, event: ChangeEvent, decrypt: Decrypt | None, today: date) -> Tasks:
    if event.kind is ChangeKind.INSERT:
        return apply_insert(tasks, event.record, decrypt, today)
    if event.kind is ChangeKind.UPDATE:
        return apply_update(tasks, event.record, decrypt, today)
    if event.kind is ChangeKind.DELETE:
        return apply_delete(tasks, event.record)
    return tasks


# --- Engine ---

class EngineState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"


class TaskReconciler:
    """One collection per instance; activate() binds it to a profile, deactivate() releases everything."""

    def __init__(
        self,
        store: Any,
        *,
        today: Callable[[], date] = local_today,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.store = store
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._today = today
        self._sleep = sleep
        self._tasks: Tasks = ()
        self._state = EngineState.EMPTY
        self._profile_id: int | None = None
        self._key: str | None = None
        self._generation = 0
        self._queue: asyncio.Queue[ChangeEvent] | None = None
        self._consumer: asyncio.Task | None = None
        self._subscription: LiveSubscription | None = None
        self._subscribe_task: asyncio.Task | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def profile_id(self) -> int | None:
        return self._profile_id

    @property
    def tasks(self) -> Tasks:
        return self._tasks

    @property
    def subscription(self) -> LiveSubscription | None:
        return self._subscription

    def get(self, task_id: str) -> Task | None:
        return next((t for t in self._tasks if t.id == task_id), None)

    def search(self, query: str | None) -> list[Task]:
        return filter_by_title(self._tasks, query)

    def _decrypt(self, value: str) -> str:
        return decrypt_text(value, self._key)

    def _commit(self, transition: Callable[[Tasks], Tasks]) -> None:
        self._tasks = tuple(transition(self._tasks))

    # --- Lifecycle ---

    async def activate(self, profile_id: int, key: str) -> None:
        """
        Bind to profile: tear down the previous profile, subscribe, bulk load, then apply queued events.
        Repeating it for the bound profile is a no-op unless live updates have given up.
        """
        live_gone = self._subscription is not None and self._subscription.closed
        if self._profile_id == profile_id and self._state is not EngineState.EMPTY and not live_gone:
            logger.debug("activate(%s) suppressed: already %s", profile_id, self._state.value)
            return
        self._teardown()
        gen = self._generation
        self._profile_id = profile_id
        self._key = key
        self._state = EngineState.LOADING

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._queue = queue

        def on_event(event: ChangeEvent) -> None:
            # Called from whichever thread committed the write
            loop.call_soon_threadsafe(queue.put_nowait, event)

        self._subscription = LiveSubscription(
            self.store, profile_id, on_event,
            max_retries=self.max_retries, backoff_seconds=self.backoff_seconds, sleep=self._sleep,
        )
        self._subscribe_task = asyncio.create_task(self._subscription.start())
        # let the first subscribe attempt run before the snapshot is read
        await asyncio.sleep(0)

        await self._bulk_load(gen)
        if gen != self._generation:
            return
        self._consumer = asyncio.create_task(self._consume(queue))

    def deactivate(self) -> None:
        """Logout / profile switch: release the live subscription and empty the collection."""
        if self._profile_id is not None:
            logger.info("Deactivating task collection for profile %s", self._profile_id)
        self._teardown()

    def _teardown(self) -> None:
        # loads still in flight belong to the released profile
        self._generation += 1
        if self._subscription is not None:
            self._subscription.close()
        for t in (self._subscribe_task, self._consumer):
            if t is not None and not t.done():
                t.cancel()
        self._subscription = None
        self._subscribe_task = None
        self._consumer = None
        self._queue = None
        self._profile_id = None
        self._key = None
        self._tasks = ()
        self._state = EngineState.EMPTY

    async def wait_live(self) -> bool:
        """Wait for the current subscription attempt (including retries) to settle. True if active."""
        task = self._subscribe_task
        if task is None or task.cancelled():
            return False
        return await task

    async def drain(self) -> None:
        """Wait until every event received so far has been applied."""
        # one loop pass so events handed over with call_soon_threadsafe are enqueued
        await asyncio.sleep(0)
        if self._queue is not None and self._consumer is not None:
            await self._queue.join()

    async def refresh(self) -> None:
        """Re-read the whole collection for the active profile."""
        if self._profile_id is None:
            return
        await self._bulk_load(self._generation)

    async def _bulk_load(self, gen: int) -> None:
        profile_id = self._profile_id
        try:
            records = await asyncio.to_thread(self.store.list_tasks, profile_id)
        except Exception as e:
            logger.warning("Bulk load for profile %s failed: %s", profile_id, e)
            records = []
        if gen != self._generation:
            return
        today = self._today()
        self._commit(lambda _: apply_bulk_load(records, self._decrypt, today))
        self._state = EngineState.READY
        logger.info("Loaded %d visible tasks for profile %s", len(self._tasks), profile_id)

    async def _consume(self, queue: asyncio.Queue[ChangeEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                today = self._today()
                self._commit(lambda tasks: apply_event(tasks, event, self._decrypt, today))
            except Exception:
                logger.exception("Failed to apply %s event for task %s", event.kind.value, event.record.get("id"))
            finally:
                queue.task_done()

    # --- Operations ---

    def _require_profile(self) -> int:
        if self._profile_id is None:
            raise RuntimeError("No active profile")
        return self._profile_id

    async def toggle(self, task_id: str, day: date | None = None) -> bool:
        """
        Flip completion of task_id for day (default: today). Returns False when rejected
        (unknown task, or recurring task not due that day). The collection is updated before
        the write; if the write fails the entry is restored and the error re-raised.
        """
        target = self.get(task_id)
        if target is None:
            return False
        ref = day or self._today()
        result = plan_toggle(target, ref)
        if result is None:
            logger.info("Toggle of %s rejected: not due on %s", task_id, ref.isoformat())
            return False
        if target.recurring:
            optimistic = target.model_copy(update={"completed_dates": result.completed_dates})
            optimistic = optimistic.model_copy(update={"completed": derive_completed(optimistic, self._today())})
        else:
            optimistic = target.model_copy(update={"completed": result.completed})
        self._commit(lambda tasks: replace_task(tasks, optimistic))
        try:
            await asyncio.to_thread(self.store.update_task, task_id, result.changes)
        except Exception:
            self._commit(lambda tasks: replace_task(tasks, target))
            raise
        return True

    async def add_task(self, task: NewTask | Mapping[str, Any]) -> Task:
        """Persist a new task, then reload the collection (also on failure, before re-raising)."""
        profile_id = self._require_profile()
        try:
            created = await asyncio.to_thread(self.store.create_task, task, profile_id, self._key)
        except Exception:
            await self.refresh()
            raise
        await self.refresh()
        return created

    async def delete_task(self, task_id: str) -> bool:
        self._require_profile()
        deleted = await asyncio.to_thread(self.store.delete_task, task_id)
        self._commit(lambda tasks: apply_delete(tasks, {"id": task_id}))
        return deleted

    def status(self) -> dict[str, Any]:
        sub = self._subscription
        return {
            "state": self._state.value,
            "profile_id": self._profile_id,
            "task_count": len(self._tasks),
            "pending_events": self._queue.qsize() if self._queue is not None else 0,
            "subscription": sub.state.value if sub is not None else None,
            "subscribe_attempts": sub.attempts if sub is not None else 0,
            "retry_count": sub.retries if sub is not None else 0,
        }
