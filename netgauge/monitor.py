"""
Real-time ping monitor.

Probes one host every ``interval`` seconds and yields running statistics
until its cancel token fires::

    monitor = PingMonitor("192.168.1.1")
    async for stats in monitor.stream(token):
        print(stats.ping_text, stats.packet_loss_text)
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .cancel import CancelToken
from .constants import MONITOR_INTERVAL, MONITOR_TIMEOUT
from .errors import MeasurementCancelled, ProbeFailure
from .latency import IcmpProbe, LatencyProbe
from .models import Endpoint

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PingStats:
    current_ping_ms: Optional[float]
    packet_loss_percent: float
    reachable: bool
    sent: int = 0
    lost: int = 0

    @property
    def ping_text(self) -> str:
        if self.current_ping_ms is None:
            return "--"
        return f"{self.current_ping_ms:.0f} ms"

    @property
    def packet_loss_text(self) -> str:
        if self.packet_loss_percent == 0:
            return "No Packet Loss"
        return f"{self.packet_loss_percent:.1f}%"

    @property
    def has_packet_loss(self) -> bool:
        return self.packet_loss_percent > 0

    def to_dict(self) -> dict:
        return {
            "ping_ms": None if self.current_ping_ms is None else round(self.current_ping_ms, 1),
            "packet_loss_percent": round(self.packet_loss_percent, 1),
            "reachable": self.reachable,
            "sent": self.sent,
            "lost": self.lost,
        }


class PingMonitor:
    """Continuous single-host prober with running packet loss."""

    def __init__(
        self,
        host: str,
        interval: float = MONITOR_INTERVAL,
        timeout: float = MONITOR_TIMEOUT,
        probe: Optional[LatencyProbe] = None,
    ) -> None:
        self.host = host
        self.interval = interval
        self.timeout = timeout
        self._probe = probe
        self.sent = 0
        self.lost = 0

    def _stats(self, rtt: Optional[float]) -> PingStats:
        loss = self.lost / self.sent * 100 if self.sent else 0.0
        return PingStats(
            current_ping_ms=rtt,
            packet_loss_percent=loss,
            reachable=rtt is not None,
            sent=self.sent,
            lost=self.lost,
        )

    async def ping_once(self, probe: LatencyProbe) -> PingStats:
        self.sent += 1
        try:
            rtt: Optional[float] = await probe.probe_once(Endpoint(hostname=self.host), self.timeout)
        except ProbeFailure as exc:
            LOGGER.debug("Ping to %s failed: %s", self.host, exc)
            self.lost += 1
            rtt = None
        return self._stats(rtt)

    async def stream(self, token: Optional[CancelToken] = None) -> AsyncIterator[PingStats]:
        """Yield one ``PingStats`` per interval until *token* fires."""
        token = token or CancelToken()
        LOGGER.info("Starting ping monitor for %s", self.host)
        async with (self._probe or IcmpProbe(max_workers=1)) as probe:
            while not token.is_cancelled:
                started = time.perf_counter()
                try:
                    stats = await asyncio.wait_for(
                        self.ping_once(probe), timeout=self.timeout + 0.5
                    )
                except asyncio.TimeoutError:
                    self.lost += 1
                    stats = self._stats(None)
                if token.is_cancelled:
                    break
                yield stats

                try:
                    await token.sleep(max(0.0, self.interval - (time.perf_counter() - started)))
                except MeasurementCancelled:
                    break
        LOGGER.info("Stopped ping monitor for %s", self.host)
