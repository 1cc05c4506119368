import asyncio
import unittest

from live_subscription import LiveSubscription, SubscriptionState
from task_service import SubscriptionError


class FlakyStore:
    """subscribe() fails the first `failures` times, then hands out unsubscribe callables."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.listeners: list = []

    def subscribe(self, profile_id, on_event):
        self.calls += 1
        if self.calls <= self.failures:
            raise SubscriptionError("CHANNEL_ERROR")
        self.listeners.append(on_event)
        return lambda: self.listeners.remove(on_event)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestLiveSubscription(unittest.IsolatedAsyncioTestCase):
    async def test_connects_first_time(self) -> None:
        store = FlakyStore()
        sub = LiveSubscription(store, 1, lambda e: None)
        self.assertIs(sub.state, SubscriptionState.IDLE)
        self.assertTrue(await sub.start())
        self.assertIs(sub.state, SubscriptionState.ACTIVE)
        self.assertEqual(len(store.listeners), 1)

    async def test_retries_with_linear_backoff(self) -> None:
        store, sleep = FlakyStore(failures=2), RecordingSleep()
        sub = LiveSubscription(store, 1, lambda e: None, max_retries=3, backoff_seconds=2.0, sleep=sleep)
        self.assertTrue(await sub.start())
        self.assertEqual(sleep.delays, [2.0, 4.0])
        self.assertEqual(sub.attempts, 3)
        self.assertIs(sub.state, SubscriptionState.ACTIVE)

    async def test_gives_up_after_max_retries(self) -> None:
        store, sleep = FlakyStore(failures=10), RecordingSleep()
        sub = LiveSubscription(store, 1, lambda e: None, max_retries=3, backoff_seconds=2.0, sleep=sleep)
        with self.assertLogs("live_subscription", level="WARNING"):
            self.assertFalse(await sub.start())
        self.assertEqual(sleep.delays, [2.0, 4.0, 6.0])
        self.assertEqual(store.calls, 4)
        self.assertIs(sub.state, SubscriptionState.CLOSED)
        self.assertEqual(store.listeners, [])

    async def test_second_start_while_pending_is_suppressed(self) -> None:
        store = FlakyStore(failures=1)
        gate = asyncio.Event()

        async def slow_sleep(_delay: float) -> None:
            await gate.wait()

        sub = LiveSubscription(store, 1, lambda e: None, sleep=slow_sleep)
        first = asyncio.create_task(sub.start())
        await asyncio.sleep(0)
        self.assertIs(sub.state, SubscriptionState.RETRYING)
        self.assertFalse(await sub.start())
        self.assertEqual(store.calls, 1)
        gate.set()
        self.assertTrue(await first)
        self.assertEqual(len(store.listeners), 1)

    async def test_close_releases_and_stops_retrying(self) -> None:
        store = FlakyStore(failures=1)
        gate = asyncio.Event()

        async def slow_sleep(_delay: float) -> None:
            await gate.wait()

        sub = LiveSubscription(store, 1, lambda e: None, sleep=slow_sleep)
        pending = asyncio.create_task(sub.start())
        await asyncio.sleep(0)
        sub.close()
        gate.set()
        self.assertFalse(await pending)
        self.assertEqual(store.calls, 1)
        self.assertEqual(store.listeners, [])

        active = LiveSubscription(store, 2, lambda e: None)
        await active.start()
        self.assertEqual(len(store.listeners), 1)
        active.close()
        active.close()
        self.assertEqual(store.listeners, [])
        self.assertIs(active.state, SubscriptionState.CLOSED)


if __name__ == "__main__":
    unittest.main(verbosity=2)
