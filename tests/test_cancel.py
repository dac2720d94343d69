"""Tests for netgauge.cancel -- cooperative cancellation."""

import asyncio
import threading
import unittest

from netgauge.cancel import CancelToken, run_cancellable
from netgauge.errors import MeasurementCancelled


class TestCancelToken(unittest.IsolatedAsyncioTestCase):
    def test_idempotent(self):
        token = CancelToken()
        self.assertFalse(token.is_cancelled)
        token.cancel()
        token.cancel()
        self.assertTrue(token.is_cancelled)
        with self.assertRaises(MeasurementCancelled):
            token.raise_if_cancelled()

    async def test_sleep_completes(self):
        token = CancelToken()
        await token.sleep(0.01)
        await token.sleep(0)
        self.assertFalse(token.is_cancelled)

    async def test_sleep_interrupted(self):
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel)
        loop = asyncio.get_running_loop()
        start = loop.time()
        with self.assertRaises(MeasurementCancelled):
            await token.sleep(5.0)
        self.assertLess(loop.time() - start, 2.0)

    async def test_cancel_from_another_thread(self):
        token = CancelToken()
        timer = threading.Timer(0.02, token.cancel)
        timer.start()
        try:
            await asyncio.wait_for(token.wait(), timeout=2.0)
        finally:
            timer.cancel()
        self.assertTrue(token.is_cancelled)

    async def test_wait_returns_when_already_cancelled(self):
        token = CancelToken()
        token.cancel()
        await asyncio.wait_for(token.wait(), timeout=0.5)


class TestRunCancellable(unittest.IsolatedAsyncioTestCase):
    async def test_returns_result(self):
        async def work():
            await asyncio.sleep(0)
            return 42

        self.assertEqual(await run_cancellable(work(), CancelToken()), 42)

    async def test_propagates_errors(self):
        async def work():
            raise ValueError("nope")

        with self.assertRaises(ValueError):
            await run_cancellable(work(), CancelToken())

    async def test_cancel_abandons_inner_task(self):
        token = CancelToken()
        inner_cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise

        asyncio.get_running_loop().call_later(0.02, token.cancel)
        with self.assertRaises(MeasurementCancelled):
            await run_cancellable(work(), token)
        self.assertTrue(inner_cancelled.is_set())


if __name__ == "__main__":
    unittest.main()
