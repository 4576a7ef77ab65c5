import asyncio
import unittest

from catalog_sync.retry import RetryPolicy


class TestRetryPolicy(unittest.IsolatedAsyncioTestCase):
    async def test_returns_first_success(self):
        calls = []

        async def op():
            calls.append(1)
            if len(calls) == 1:
                raise ConnectionError("reset")
            return "ok"

        policy = RetryPolicy(max_attempts=2, timeout=1.0, backoff=0)
        self.assertEqual(await policy.run(op), "ok")
        self.assertEqual(len(calls), 2)

    async def test_raises_last_error_after_all_attempts(self):
        calls = []

        async def op():
            calls.append(1)
            raise ConnectionError(f"attempt {len(calls)}")

        policy = RetryPolicy(max_attempts=3, timeout=1.0, backoff=0)
        with self.assertRaisesRegex(ConnectionError, "attempt 3"):
            await policy.run(op)
        self.assertEqual(len(calls), 3)

    async def test_zero_attempts_is_an_error_not_a_silent_none(self):
        calls = []

        async def op():
            calls.append(1)
            return "ok"

        with self.assertRaisesRegex(RuntimeError, "max_attempts"):
            await RetryPolicy(max_attempts=0).run(op, label="feed")
        self.assertEqual(calls, [])

    async def test_timeout_counts_as_failed_attempt(self):
        calls = []

        async def op():
            calls.append(1)
            await asyncio.sleep(5)

        policy = RetryPolicy(max_attempts=2, timeout=0.01, backoff=0)
        with self.assertRaises(TimeoutError):
            await policy.run(op)
        self.assertEqual(len(calls), 2)

    async def test_non_retryable_error_propagates_immediately(self):
        calls = []

        async def op():
            calls.append(1)
            raise KeyError("bad")

        policy = RetryPolicy(max_attempts=3, timeout=None, backoff=0, retry_on=(ConnectionError,))
        with self.assertRaises(KeyError):
            await policy.run(op)
        self.assertEqual(len(calls), 1)

    async def test_backoff_uses_injected_sleep(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        async def op():
            raise ConnectionError("down")

        policy = RetryPolicy(max_attempts=3, timeout=None, backoff=0.5)
        with self.assertRaises(ConnectionError):
            await policy.run(op, sleep=fake_sleep)
        self.assertEqual(delays, [0.5, 1.0])
