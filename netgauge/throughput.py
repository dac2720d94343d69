"""
Direction-agnostic throughput measurement used by the engine.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from .cancel import CancelToken
from .constants import DEFAULT_LOADED_LATENCY_COUNT, DEFAULT_LOADED_LATENCY_DELAY, DEFAULT_PROBE_TIMEOUT
from .download import DownloadTester
from .latency import LatencyTester
from .models import Endpoint, ThroughputSample
from .sampling import Direction, TransferResult
from .upload import UploadTester


class ThroughputProbe:
    """
    Dispatches a measurement to the download or upload tester.

    When a ``LatencyTester`` is supplied, a loaded-latency series runs
    concurrently with downloads (never uploads).
    """

    def __init__(
        self,
        endpoint: Endpoint,
        latency: Optional[LatencyTester] = None,
        loaded_latency_count: int = DEFAULT_LOADED_LATENCY_COUNT,
        loaded_latency_delay: float = DEFAULT_LOADED_LATENCY_DELAY,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.endpoint = endpoint
        self.latency = latency
        self.loaded_latency_count = loaded_latency_count
        self.loaded_latency_delay = loaded_latency_delay
        self.probe_timeout = probe_timeout
        self._clock = clock
        self.last_result: Optional[TransferResult] = None

    async def _loaded_latency(self, token: CancelToken) -> Optional[float]:
        return await self.latency.measure_loaded_latency(
            self.loaded_latency_count,
            timeout=self.probe_timeout,
            delay=self.loaded_latency_delay,
            token=token,
        )

    async def measure(
        self,
        direction: Direction,
        total_bytes: int,
        sample_interval: float,
        timeout: float,
        on_sample: Optional[Callable[[ThroughputSample], None]] = None,
        token: Optional[CancelToken] = None,
        on_loaded_latency: Optional[Callable[[Optional[float]], None]] = None,
    ) -> float:
        """Run one transfer and return its StableWindowAverage rate in Mbps."""
        token = token or CancelToken()
        direction = Direction(direction)

        if direction is Direction.DOWNLOAD:
            tester = DownloadTester(
                self.endpoint, total_bytes, sample_interval, timeout, clock=self._clock
            )
            tester.on_sample = on_sample
            tester.on_loaded_latency = on_loaded_latency
            loaded = (
                self._loaded_latency
                if self.latency is not None and self.loaded_latency_count > 0
                else None
            )
            result = await tester.test(token, loaded_latency=loaded)
        else:
            tester = UploadTester(
                self.endpoint, total_bytes, sample_interval, timeout, clock=self._clock
            )
            tester.on_sample = on_sample
            result = await tester.test(token)

        self.last_result = result
        return result.speed_mbps
