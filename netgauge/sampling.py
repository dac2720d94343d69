"""
Throughput sampling shared by the download and upload testers.
"""
from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .models import ThroughputSample
from .stats import final_rate, naive_rate


class Direction(str, enum.Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class TransferResult:
    """Outcome of one streamed transfer."""

    direction: Direction = Direction.DOWNLOAD
    speed_mbps: float = 0.0
    bytes_total: int = 0
    duration_ms: float = 0.0
    samples: List[ThroughputSample] = field(default_factory=list)
    loaded_latency_ms: Optional[float] = None
    timed_out: bool = False

    def to_dict(self) -> dict:
        result: dict = {
            "direction": self.direction.value,
            "speed_mbps": round(self.speed_mbps, 2),
            "bytes_total": self.bytes_total,
            "duration_ms": round(self.duration_ms, 2),
            "samples": [round(s.mbps, 2) for s in self.samples],
            "timed_out": self.timed_out,
        }
        if self.loaded_latency_ms is not None:
            result["loaded_latency_ms"] = round(self.loaded_latency_ms, 1)
        return result


# ---------------------------------------------------------------------------
# Sampler
# ---------------------------------------------------------------------------

class RateSampler:
    """
    Turns a stream of byte counts into ``ThroughputSample`` objects.

    The transfer loop calls ``record(n)`` after every chunk.  Whenever at
    least ``interval`` seconds have passed since the previous sampling
    boundary, the bytes accumulated in between are converted to Mbps::

        mbps = bytes_in_interval * 8 / seconds_in_interval / 1e6

    Samples whose boundary falls inside the first ``warmup`` seconds are
    dropped.  When ``min_samples`` is set, a sample is forced as soon as
    ``force_after`` seconds have passed while fewer than ``min_samples``
    exist, and ``finish()`` flushes the tail if the count is still short.
    """

    def __init__(
        self,
        interval: float,
        warmup: float = 0.0,
        min_samples: int = 0,
        force_after: Optional[float] = None,
        on_sample: Optional[Callable[[ThroughputSample], None]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.interval = interval
        self.warmup = warmup
        self.min_samples = min_samples
        self.force_after = force_after
        self.on_sample = on_sample
        self._clock = clock

        self.samples: List[ThroughputSample] = []
        self.total_bytes = 0
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self._boundary = 0.0
        self._interval_bytes = 0

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> float:
        now = self._clock()
        self.started_at = now
        self._boundary = now
        return now

    def finish(self) -> float:
        """Stop the stopwatch and flush a short tail if needed.  Idempotent."""
        if self.finished_at is None:
            self.finished_at = self._clock()
            if len(self.samples) < self.min_samples:
                self._emit(self.finished_at)
        return self.finished_at

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else self._clock()
        return end - self.started_at

    # -- Recording ----------------------------------------------------------

    def record(self, nbytes: int) -> Optional[ThroughputSample]:
        """Account *nbytes*; return the sample emitted at this boundary, if any."""
        if self.started_at is None:
            self.start()
        self.total_bytes += nbytes
        self._interval_bytes += nbytes

        now = self._clock()
        since = now - self._boundary
        if since >= self.interval or self._should_force(since):
            return self._emit(now)
        return None

    def _should_force(self, since: float) -> bool:
        return (
            self.force_after is not None
            and len(self.samples) < self.min_samples
            and since >= self.force_after
        )

    def _emit(self, now: float) -> Optional[ThroughputSample]:
        seconds = now - self._boundary
        if seconds <= 0 or self._interval_bytes <= 0:
            return None

        mbps = self._interval_bytes * 8 / seconds / 1_000_000
        self._boundary = now
        self._interval_bytes = 0

        offset = now - self.started_at
        if offset < self.warmup:
            return None

        sample = ThroughputSample(timestamp_offset_ms=int(offset * 1000), value=mbps)
        self.samples.append(sample)
        if self.on_sample is not None:
            self.on_sample(sample)
        return sample

    # -- Aggregation --------------------------------------------------------

    def final_mbps(self) -> float:
        """StableWindowAverage of the samples, or the naive rate when there are none."""
        if self.samples:
            return final_rate([s.mbps for s in self.samples])
        return naive_rate(self.total_bytes, self.elapsed)

    def result(self, direction: Direction, timed_out: bool = False) -> TransferResult:
        return TransferResult(
            direction=direction,
            speed_mbps=self.final_mbps(),
            bytes_total=self.total_bytes,
            duration_ms=self.elapsed * 1000,
            samples=list(self.samples),
            timed_out=timed_out,
        )
