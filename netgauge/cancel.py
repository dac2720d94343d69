"""
Cooperative cancellation.

A ``CancelToken`` is a one-way, idempotent signal.  It can be triggered from
any thread; coroutines observe it either by polling ``is_cancelled`` at loop
tops or by awaiting ``wait()``.
"""
from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, List, Tuple, TypeVar

from .errors import MeasurementCancelled

T = TypeVar("T")


class CancelToken:
    """Thread-safe cancellation flag with async waiters."""

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._lock = threading.Lock()
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self) -> None:
        """Trigger the token.  Calling it again is a no-op."""
        with self._lock:
            if self._flag.is_set():
                return
            self._flag.set()
            waiters, self._waiters = self._waiters, []

        for loop, event in waiters:
            if loop.is_closed():
                continue
            try:
                loop.call_soon_threadsafe(event.set)
            except RuntimeError:
                # loop closed between the check and the call
                pass

    def raise_if_cancelled(self) -> None:
        if self._flag.is_set():
            raise MeasurementCancelled()

    async def wait(self) -> None:
        """Block until the token fires."""
        loop = asyncio.get_running_loop()
        event = asyncio.Event()
        with self._lock:
            if self._flag.is_set():
                return
            self._waiters.append((loop, event))
        try:
            await event.wait()
        finally:
            with self._lock:
                if (loop, event) in self._waiters:
                    self._waiters.remove((loop, event))

    async def sleep(self, seconds: float) -> None:
        """Sleep for *seconds*, raising ``MeasurementCancelled`` if the token fires first."""
        self.raise_if_cancelled()
        if seconds <= 0:
            await asyncio.sleep(0)
        else:
            try:
                await asyncio.wait_for(self.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                return
        self.raise_if_cancelled()


async def run_cancellable(aw: Awaitable[T], token: CancelToken) -> T:
    """
    Await *aw*, abandoning it as soon as *token* fires.

    The inner task is cancelled (which closes any connection it holds) and
    ``MeasurementCancelled`` is raised in its place.
    """
    token.raise_if_cancelled()
    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise MeasurementCancelled()
