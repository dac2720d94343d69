"""
Network quality grading.

Maps the scalar metrics of a measurement to three usage scenarios, each
scored 0-100 as a weighted sum of piecewise sub-scores.  An absent metric
contributes nothing to its scenario (no imputation).
"""
from __future__ import annotations

from typing import Optional

from .models import Grade, MeasurementBundle, NetworkQuality, QualityVerdict

STREAMING = "Video Streaming"
GAMING = "Online Gaming"
RTC = "Video Chatting"

_GRADES = [
    (80.0, Grade.GREAT),
    (60.0, Grade.GOOD),
    (40.0, Grade.AVERAGE),
    (20.0, Grade.POOR),
]


def grade_for(score_value: float) -> Grade:
    """Return the grade band for a 0-100 score."""
    for threshold, grade in _GRADES:
        if score_value >= threshold:
            return grade
    return Grade.BAD


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _verdict(total: float, scenario: str) -> QualityVerdict:
    total = _clamp(total)
    return QualityVerdict(score=total, grade=grade_for(total), scenario=scenario)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

def _streaming_download(v: float) -> float:
    if v >= 50:
        return 60.0
    if v >= 25:
        return 50 + ((v - 25) / 25) * 10
    if v >= 10:
        return 35 + ((v - 10) / 15) * 15
    if v >= 5:
        return 20 + ((v - 5) / 5) * 15
    return (v / 5) * 20


def _streaming_latency(v: float) -> float:
    if v <= 50:
        return 20.0
    if v <= 100:
        return 15 + ((50 - (v - 50)) / 50) * 5
    if v <= 200:
        return 10 + ((100 - (v - 100)) / 100) * 5
    return max(0.0, 10 - (v - 200) / 100)


def _streaming_loss(v: float) -> float:
    if v == 0:
        return 20.0
    if v < 1:
        return 15.0
    if v < 3:
        return 10.0
    if v < 5:
        return 5.0
    return 0.0


def score_streaming(
    download_mbps: Optional[float],
    latency_ms: Optional[float],
    packet_loss_percent: Optional[float],
) -> QualityVerdict:
    total = 0.0
    if download_mbps is not None:
        total += _streaming_download(download_mbps)
    if latency_ms is not None:
        total += _streaming_latency(latency_ms)
    if packet_loss_percent is not None:
        total += _streaming_loss(packet_loss_percent)
    return _verdict(total, STREAMING)


# ---------------------------------------------------------------------------
# Gaming
# ---------------------------------------------------------------------------

def _gaming_latency(v: float) -> float:
    if v <= 20:
        return 40.0
    if v <= 50:
        return 30 + ((30 - (v - 20)) / 30) * 10
    if v <= 100:
        return 15 + ((50 - (v - 50)) / 50) * 15
    return max(0.0, 15 - (v - 100) / 50)


def _gaming_jitter(v: float) -> float:
    if v <= 5:
        return 25.0
    if v <= 15:
        return 15 + ((10 - (v - 5)) / 10) * 10
    if v <= 30:
        return 5 + ((15 - (v - 15)) / 15) * 10
    return 0.0


def _gaming_loss(v: float) -> float:
    if v == 0:
        return 25.0
    if v < 0.5:
        return 20.0
    if v < 1:
        return 10.0
    if v < 2:
        return 5.0
    return 0.0


def _gaming_download(v: float) -> float:
    if v >= 10:
        return 10.0
    if v >= 5:
        return 5 + ((v - 5) / 5) * 5
    return (v / 5) * 5


def score_gaming(
    latency_ms: Optional[float],
    jitter_ms: Optional[float],
    packet_loss_percent: Optional[float],
    download_mbps: Optional[float],
) -> QualityVerdict:
    total = 0.0
    if latency_ms is not None:
        total += _gaming_latency(latency_ms)
    if jitter_ms is not None:
        total += _gaming_jitter(jitter_ms)
    if packet_loss_percent is not None:
        total += _gaming_loss(packet_loss_percent)
    if download_mbps is not None:
        total += _gaming_download(download_mbps)
    return _verdict(total, GAMING)


# ---------------------------------------------------------------------------
# Real-time communication
# ---------------------------------------------------------------------------

def _rtc_latency(v: float) -> float:
    if v <= 30:
        return 30.0
    if v <= 60:
        return 20 + ((30 - (v - 30)) / 30) * 10
    if v <= 150:
        return 10 + ((90 - (v - 60)) / 90) * 10
    return max(0.0, 10 - (v - 150) / 100)


def _rtc_jitter(v: float) -> float:
    if v <= 10:
        return 30.0
    if v <= 20:
        return 20 + ((10 - (v - 10)) / 10) * 10
    if v <= 40:
        return 10 + ((20 - (v - 20)) / 20) * 10
    return 0.0


def _rtc_loss(v: float) -> float:
    if v == 0:
        return 25.0
    if v < 0.5:
        return 20.0
    if v < 1:
        return 12.0
    if v < 2:
        return 5.0
    return 0.0


def _rtc_upload(v: float) -> float:
    if v >= 5:
        return 15.0
    if v >= 2:
        return 10 + ((v - 2) / 3) * 5
    if v >= 1:
        return 5 + (v - 1) * 5
    return v * 5


def score_rtc(
    latency_ms: Optional[float],
    jitter_ms: Optional[float],
    packet_loss_percent: Optional[float],
    upload_mbps: Optional[float],
) -> QualityVerdict:
    total = 0.0
    if latency_ms is not None:
        total += _rtc_latency(latency_ms)
    if jitter_ms is not None:
        total += _rtc_jitter(jitter_ms)
    if packet_loss_percent is not None:
        total += _rtc_loss(packet_loss_percent)
    if upload_mbps is not None:
        total += _rtc_upload(upload_mbps)
    return _verdict(total, RTC)


# ---------------------------------------------------------------------------
# Combined
# ---------------------------------------------------------------------------

def score(
    latency_ms: Optional[float] = None,
    jitter_ms: Optional[float] = None,
    packet_loss_percent: Optional[float] = None,
    download_mbps: Optional[float] = None,
    upload_mbps: Optional[float] = None,
    loaded_latency_ms: Optional[float] = None,
) -> NetworkQuality:
    """
    Score all three scenarios.

    *loaded_latency_ms* is accepted for completeness but carries no weight in
    any scenario.
    """
    return NetworkQuality(
        streaming=score_streaming(download_mbps, latency_ms, packet_loss_percent),
        gaming=score_gaming(latency_ms, jitter_ms, packet_loss_percent, download_mbps),
        rtc=score_rtc(latency_ms, jitter_ms, packet_loss_percent, upload_mbps),
    )


def score_bundle(bundle: MeasurementBundle) -> NetworkQuality:
    return score(
        latency_ms=bundle.latency_ms,
        jitter_ms=bundle.jitter_ms,
        packet_loss_percent=bundle.packet_loss_percent,
        download_mbps=bundle.download_mbps,
        upload_mbps=bundle.upload_mbps,
        loaded_latency_ms=bundle.loaded_latency_ms,
    )


def grade_color(grade: Grade) -> str:
    """Rich color name for a grade."""
    return {
        Grade.GREAT: "green",
        Grade.GOOD: "green",
        Grade.AVERAGE: "yellow",
        Grade.POOR: "red",
        Grade.BAD: "red",
    }[grade]
