"""
Download speed test module.

One streamed HTTPS GET of exactly ``total_bytes`` from ``/__down``.  The
body is read incrementally; a ``RateSampler`` converts the byte counts into
throughput samples, discarding the first ``DOWNLOAD_WARMUP_SECONDS``.  An
optional loaded-latency series runs alongside the transfer and is joined
once the transfer has finished.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import aiohttp

from .cancel import CancelToken, run_cancellable
from .constants import (
    COMMON_HEADERS,
    CONNECT_TIMEOUT,
    DEFAULT_DOWNLOAD_BYTES,
    DEFAULT_TRANSFER_TIMEOUT,
    DOWNLOAD_WARMUP_SECONDS,
    READ_CHUNK_SIZE,
    SAMPLE_INTERVAL,
)
from .errors import TransferFailed, TransferTimeout
from .models import Endpoint, ThroughputSample
from .sampling import Direction, RateSampler, TransferResult

LOGGER = logging.getLogger(__name__)

LoadedLatencyFn = Callable[[CancelToken], Awaitable[Optional[float]]]


class DownloadTester:
    """
    Single-stream download tester.

    ``on_sample`` receives every post-warm-up ``ThroughputSample`` as soon as
    it is taken.  ``on_loaded_latency`` receives the loaded-latency result
    after both the transfer and the latency series have completed.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        total_bytes: int = DEFAULT_DOWNLOAD_BYTES,
        sample_interval: float = SAMPLE_INTERVAL,
        timeout: float = DEFAULT_TRANSFER_TIMEOUT,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.endpoint = endpoint
        self.total_bytes = total_bytes
        self.sample_interval = sample_interval
        self.timeout = timeout
        self._clock = clock
        self.on_sample: Optional[Callable[[ThroughputSample], None]] = None
        self.on_loaded_latency: Optional[Callable[[Optional[float]], None]] = None

    def _session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(limit=1, force_close=False, enable_cleanup_closed=True)
        timeout = aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT)
        headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
        return aiohttp.ClientSession(headers=headers, connector=connector, timeout=timeout)

    async def _stream(
        self, session: aiohttp.ClientSession, sampler: RateSampler, token: CancelToken
    ) -> None:
        url = self.endpoint.download_url(self.total_bytes)
        try:
            async with session.get(url) as resp:
                if resp.status != 200:
                    raise TransferFailed(status=resp.status)
                async for chunk in resp.content.iter_chunked(READ_CHUNK_SIZE):
                    token.raise_if_cancelled()
                    sampler.record(len(chunk))
        except (aiohttp.ClientError, OSError) as exc:
            raise TransferFailed(cause=exc) from exc

    async def test(
        self,
        token: Optional[CancelToken] = None,
        loaded_latency: Optional[LoadedLatencyFn] = None,
    ) -> TransferResult:
        """
        Run the transfer.

        Raises ``TransferFailed`` on a bad status or I/O error,
        ``TransferTimeout`` if ``timeout`` elapsed before a single sample was
        taken, and ``MeasurementCancelled`` when *token* fires.
        """
        token = token or CancelToken()
        token.raise_if_cancelled()
        sampler = RateSampler(
            self.sample_interval,
            warmup=DOWNLOAD_WARMUP_SECONDS,
            on_sample=self.on_sample,
            clock=self._clock,
        )
        latency_task: Optional[asyncio.Task] = None
        timed_out = False

        async with self._session() as session:
            if loaded_latency is not None:
                latency_task = asyncio.create_task(loaded_latency(token))
            sampler.start()
            try:
                await run_cancellable(
                    asyncio.wait_for(self._stream(session, sampler, token), timeout=self.timeout),
                    token,
                )
            except asyncio.TimeoutError:
                timed_out = True
                LOGGER.debug("Download stopped at the %.1f s transfer timeout", self.timeout)
            except BaseException:
                if latency_task is not None:
                    latency_task.cancel()
                    await asyncio.gather(latency_task, return_exceptions=True)
                raise
            finally:
                sampler.finish()

        if timed_out and not sampler.samples:
            if latency_task is not None:
                latency_task.cancel()
                await asyncio.gather(latency_task, return_exceptions=True)
            raise TransferTimeout(f"No download samples within {self.timeout:.1f} s")

        result = sampler.result(Direction.DOWNLOAD, timed_out=timed_out)

        if latency_task is not None:
            result.loaded_latency_ms = await latency_task
            if self.on_loaded_latency is not None:
                self.on_loaded_latency(result.loaded_latency_ms)

        LOGGER.debug(
            "Download: %d bytes in %.0f ms, %d samples, %.2f Mbps",
            result.bytes_total, result.duration_ms, len(result.samples), result.speed_mbps,
        )
        return result
