"""
Network measurement statistics.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
Everything here is deterministic and easy to unit-test.  Inputs are finite
floats; NaN / infinity filtering is the caller's job.
"""
from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from typing import List, Sequence

from .constants import (
    STABLE_REFERENCE_PERCENTILE,
    STABLE_SPIKE_FACTOR,
    STABLE_WARMUP_FRACTION,
)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LatencyStats:
    """Aggregated latency statistics computed from a list of samples."""

    samples: List[float] = field(default_factory=list)
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    trimmed_mean: float = 0.0
    jitter: float = 0.0
    count: int = 0

    def calculate(self) -> None:
        if not self.samples:
            return
        self.count = len(self.samples)
        self.min = min(self.samples)
        self.max = max(self.samples)
        self.mean = statistics.mean(self.samples)
        self.median = median(self.samples)
        self.trimmed_mean = trimmed_mean(self.samples, 0.1)
        self.jitter = jitter(self.samples)

    def to_dict(self) -> dict:
        return {
            "samples": [round(s, 3) for s in self.samples],
            "min": round(self.min, 3),
            "max": round(self.max, 3),
            "mean": round(self.mean, 3),
            "median": round(self.median, 3),
            "trimmed_mean": round(self.trimmed_mean, 3),
            "jitter": round(self.jitter, 3),
            "count": self.count,
        }


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def _mean(values: Sequence[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def median(samples: Sequence[float]) -> float:
    """Middle value; average of the two middle values for even lengths; 0 when empty."""
    if not samples:
        return 0.0
    ordered = sorted(samples)
    n = len(ordered)
    mid = n // 2
    if n % 2:
        return float(ordered[mid])
    return (ordered[mid - 1] + ordered[mid]) / 2


def trimmed_mean(samples: Sequence[float], trim_fraction: float) -> float:
    """
    Mean after dropping ``floor(n * trim_fraction)`` values from each end.

    Fewer than three samples, or nothing left after trimming, falls back to
    the median.  A trim count of zero is the plain mean.
    """
    n = len(samples)
    if n < 3:
        return median(samples)

    ordered = sorted(samples)
    trim = int(math.floor(n * trim_fraction))
    survivors = ordered[trim:n - trim]
    if not survivors:
        return median(samples)
    return _mean(survivors)


def jitter(samples: Sequence[float]) -> float:
    """Mean absolute difference between consecutive samples, in arrival order."""
    if len(samples) < 2:
        return 0.0
    diffs = [abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))]
    return _mean(diffs)


def percentile(samples: Sequence[float], p: float) -> float:
    """Nearest-rank percentile; *p* is a fraction in [0, 1].  0 when empty."""
    if not samples:
        return 0.0
    ordered = sorted(samples)
    n = len(ordered)
    # round-half-up, like the rank rounding in the reference algorithm
    idx = int(math.floor(p * (n - 1) + 0.5))
    idx = max(0, min(idx, n - 1))
    return float(ordered[idx])


def clamp_outliers(samples: Sequence[float], reference: float, factor: float) -> List[float]:
    """Keep values ``<= reference * factor``; keep everything if that leaves nothing."""
    limit = reference * factor
    kept = [v for v in samples if v <= limit]
    return kept if kept else list(samples)


def final_rate(samples: Sequence[float]) -> float:
    """
    StableWindowAverage -- the throughput finalisation algorithm.

    1. Fewer than three samples: plain mean.
    2. Discard the first ``round(n * 0.3)`` samples (TCP ramp-up).
    3. Take the nearest-rank p90 of what remains as the peak reference.
    4. Drop anything above ``1.2 * p90`` (buffer bursts).
    5. Mean of the survivors.

    A naive ``bytes / seconds`` average is distorted at the head by slow
    start and at the tail by bufferbloat; this window is not.
    """
    n = len(samples)
    if n < 3:
        return _mean(samples)

    start = int(math.floor(n * STABLE_WARMUP_FRACTION + 0.5))
    stable = list(samples[start:]) or list(samples)
    p90 = percentile(stable, STABLE_REFERENCE_PERCENTILE)
    return _mean(clamp_outliers(stable, p90, STABLE_SPIKE_FACTOR))


def naive_rate(total_bytes: int, seconds: float) -> float:
    """Legacy whole-transfer average in Mbps."""
    if seconds <= 0:
        return 0.0
    return total_bytes * 8 / seconds / 1_000_000


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"
