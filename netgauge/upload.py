"""
Upload speed test module.

Streams ``total_bytes`` to ``/__up`` as one chunked POST built from an async
generator.  The stopwatch stops when the generator is exhausted, i.e. when
the last chunk has been handed to the transport; the server's
acknowledgment is awaited afterwards and is not part of the measured
duration.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import AsyncIterator, Callable, Optional

import aiohttp

from .cancel import CancelToken, run_cancellable
from .constants import (
    COMMON_HEADERS,
    CONNECT_TIMEOUT,
    DEFAULT_TRANSFER_TIMEOUT,
    DEFAULT_UPLOAD_BYTES,
    SAMPLE_INTERVAL,
    UPLOAD_CHUNK_SIZE,
    UPLOAD_FORCE_SAMPLE_AFTER,
    UPLOAD_MIN_SAMPLES,
)
from .errors import TransferFailed, TransferTimeout
from .models import Endpoint, ThroughputSample
from .sampling import Direction, RateSampler, TransferResult

LOGGER = logging.getLogger(__name__)


class UploadTester:
    """Single-connection upload tester; always emits at least three samples."""

    HEADERS = {
        **COMMON_HEADERS,
        "Content-Type": "application/octet-stream",
    }

    def __init__(
        self,
        endpoint: Endpoint,
        total_bytes: int = DEFAULT_UPLOAD_BYTES,
        sample_interval: float = SAMPLE_INTERVAL,
        timeout: float = DEFAULT_TRANSFER_TIMEOUT,
        chunk_size: int = UPLOAD_CHUNK_SIZE,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.endpoint = endpoint
        self.total_bytes = total_bytes
        self.sample_interval = sample_interval
        self.timeout = timeout
        self._chunk = os.urandom(chunk_size)
        self._clock = clock
        self.on_sample: Optional[Callable[[ThroughputSample], None]] = None

    def _session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(limit=1, force_close=False, enable_cleanup_closed=True)
        timeout = aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT)
        return aiohttp.ClientSession(headers=self.HEADERS, connector=connector, timeout=timeout)

    async def _body(self, sampler: RateSampler, token: CancelToken) -> AsyncIterator[bytes]:
        remaining = self.total_bytes
        chunk_size = len(self._chunk)
        while remaining > 0 and not token.is_cancelled:
            n = min(remaining, chunk_size)
            yield self._chunk if n == chunk_size else self._chunk[:n]
            remaining -= n
            sampler.record(n)
            # let the sampler, cancellation and other tasks interleave
            await asyncio.sleep(0)
        sampler.finish()

    async def _post(
        self, session: aiohttp.ClientSession, sampler: RateSampler, token: CancelToken
    ) -> None:
        try:
            async with session.post(
                self.endpoint.upload_url,
                data=self._body(sampler, token),
            ) as resp:
                # acknowledgment; the stopwatch already stopped in _body
                await resp.read()
                if not 200 <= resp.status < 300:
                    raise TransferFailed(status=resp.status)
        except (aiohttp.ClientError, OSError) as exc:
            raise TransferFailed(cause=exc) from exc

    async def test(self, token: Optional[CancelToken] = None) -> TransferResult:
        """
        Run the transfer.

        Raises ``TransferFailed``, ``TransferTimeout`` (no sample before the
        timeout) or ``MeasurementCancelled``.
        """
        token = token or CancelToken()
        token.raise_if_cancelled()
        sampler = RateSampler(
            self.sample_interval,
            min_samples=UPLOAD_MIN_SAMPLES,
            force_after=UPLOAD_FORCE_SAMPLE_AFTER,
            on_sample=self.on_sample,
            clock=self._clock,
        )
        timed_out = False

        async with self._session() as session:
            sampler.start()
            try:
                await run_cancellable(
                    asyncio.wait_for(self._post(session, sampler, token), timeout=self.timeout),
                    token,
                )
            except asyncio.TimeoutError:
                timed_out = True
                LOGGER.debug("Upload stopped at the %.1f s transfer timeout", self.timeout)
            finally:
                sampler.finish()

        token.raise_if_cancelled()
        if timed_out and not sampler.samples:
            raise TransferTimeout(f"No upload samples within {self.timeout:.1f} s")

        result = sampler.result(Direction.UPLOAD, timed_out=timed_out)
        LOGGER.debug(
            "Upload: %d bytes in %.0f ms, %d samples, %.2f Mbps",
            result.bytes_total, result.duration_ms, len(result.samples), result.speed_mbps,
        )
        return result
