"""
Latency probing.

A *probe* performs exactly one round trip and returns its RTT in
milliseconds, or raises ``ProbeFailure``.  Four transports are provided:

* ``TcpConnectProbe``  -- bare TCP connect time (default; no TLS, no HTTP)
* ``HttpHeadProbe``    -- HEAD on a keep-alive ``aiohttp`` session
* ``WebSocketProbe``   -- Ookla-style ``PING`` / ``PONG`` text frames
* ``IcmpProbe``        -- ICMP echo through ``ping3`` (used by the scanner)

``LatencyTester`` drives a probe through a series and aggregates it.
Within one run a single probe instance is used, so the overhead stays
consistent across samples.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import aiohttp
import ping3
import websockets
import websockets.exceptions

from .cancel import CancelToken
from .constants import (
    COMMON_HEADERS,
    CONNECT_TIMEOUT,
    DEFAULT_INTER_PROBE_DELAY,
    DEFAULT_LOADED_LATENCY_DELAY,
    DEFAULT_PROBE_TIMEOUT,
    LATENCY_TRIM_FRACTION,
    WARMUP_PROBE_PAUSE,
)
from .errors import AllProbesFailed, MeasurementCancelled, MeasurementError, ProbeFailure
from .models import Endpoint, LatencySample
from .stats import jitter, trimmed_mean

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------

class LatencyProbe:
    """
    One round trip per ``probe_once`` call.

    Probes that hold resources (sessions, sockets, thread pools) acquire them
    in ``__aenter__`` and release them in ``__aexit__``; stateless probes
    inherit the no-op versions.
    """

    name = "probe"

    async def __aenter__(self) -> LatencyProbe:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        return None

    async def probe_once(self, target: Endpoint, timeout: float) -> float:
        raise NotImplementedError


class TcpConnectProbe(LatencyProbe):
    """Time a bare TCP handshake to ``target.hostname:target.port``."""

    name = "tcp"

    async def probe_once(self, target: Endpoint, timeout: float) -> float:
        start = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(target.hostname, target.port),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProbeFailure("connect timeout", cause=exc, connectivity=False) from exc
        except OSError as exc:
            raise ProbeFailure(f"connect failed: {exc}", cause=exc) from exc

        rtt = (time.perf_counter() - start) * 1000
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return rtt


class HttpHeadProbe(LatencyProbe):
    """HEAD against the trace path over one persistent connection."""

    name = "http"

    def __init__(self) -> None:
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> HttpHeadProbe:
        connector = aiohttp.TCPConnector(limit=2, force_close=False, enable_cleanup_closed=True)
        self._session = aiohttp.ClientSession(headers=COMMON_HEADERS, connector=connector)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "HttpHeadProbe must be used as an async context manager "
                "(async with HttpHeadProbe() as probe: ...)"
            )
        return self._session

    async def probe_once(self, target: Endpoint, timeout: float) -> float:
        session = self._ensure_session()
        start = time.perf_counter()
        try:
            async with session.head(
                target.trace_url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=False,
            ) as resp:
                await resp.release()
        except asyncio.TimeoutError as exc:
            raise ProbeFailure("HEAD timeout", cause=exc, connectivity=False) from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise ProbeFailure(f"HEAD failed: {exc}", cause=exc) from exc
        return (time.perf_counter() - start) * 1000


class WebSocketProbe(LatencyProbe):
    """
    Ookla WebSocket protocol::

        1. Connect to  ws(s)://{hostname}:{port}/ws
        2. Send     PING {timestamp_ms}
        3. Receive  PONG {server_timestamp}

    Greeting frames (HELLO / YOURIP / CAPABILITIES) are skipped.
    """

    name = "ws"

    _MAX_SKIPPED_FRAMES = 5

    def __init__(self) -> None:
        self._ws = None
        self._target: Optional[Endpoint] = None
        self._lock = asyncio.Lock()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self._close()

    async def _close(self) -> None:
        if self._ws is not None:
            try:
                await self._ws.close()
            except (websockets.exceptions.WebSocketException, OSError):
                pass
            self._ws = None

    async def _connect(self, target: Endpoint, timeout: float) -> None:
        if self._ws is not None and self._target == target:
            return
        await self._close()
        self._ws = await websockets.connect(
            target.ws_url,
            additional_headers=COMMON_HEADERS,
            ping_interval=None,
            close_timeout=2,
            open_timeout=max(timeout, CONNECT_TIMEOUT),
        )
        self._target = target

    async def _exchange(self, timeout: float) -> float:
        send_time = time.perf_counter()
        await self._ws.send(f"PING {int(time.time() * 1000)}")
        for _ in range(self._MAX_SKIPPED_FRAMES):
            msg = await asyncio.wait_for(self._ws.recv(), timeout=timeout)
            if isinstance(msg, str) and msg.startswith("PONG"):
                return (time.perf_counter() - send_time) * 1000
        raise ProbeFailure("no PONG received", connectivity=False)

    async def probe_once(self, target: Endpoint, timeout: float) -> float:
        async with self._lock:
            try:
                await self._connect(target, timeout)
                return await self._exchange(timeout)
            except asyncio.TimeoutError as exc:
                await self._close()
                raise ProbeFailure("ping timeout", cause=exc, connectivity=False) from exc
            except (websockets.exceptions.WebSocketException, OSError) as exc:
                await self._close()
                raise ProbeFailure(f"websocket error: {exc}", cause=exc) from exc


class IcmpProbe(LatencyProbe):
    """
    ICMP echo via ``ping3``.

    ``ping3`` is blocking, so each echo runs on a private thread pool sized
    to the caller's concurrency; the pool is shut down on exit.
    """

    name = "icmp"

    def __init__(self, max_workers: int = 8) -> None:
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    async def __aenter__(self) -> IcmpProbe:
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="icmp"
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    async def probe_once(self, target: Endpoint, timeout: float) -> float:
        loop = asyncio.get_running_loop()
        call = functools.partial(ping3.ping, target.hostname, timeout=timeout, unit="ms")
        try:
            rtt = await loop.run_in_executor(self._executor, call)
        except OSError as exc:
            raise ProbeFailure(f"icmp error: {exc}", cause=exc) from exc
        except ping3.errors.PingError as exc:
            raise ProbeFailure(f"icmp error: {exc}", cause=exc, connectivity=False) from exc
        if rtt is None:
            raise ProbeFailure("icmp timeout", connectivity=False)
        if rtt is False:
            raise ProbeFailure("icmp unreachable", connectivity=True)
        return float(rtt)


def make_probe(transport: str, **kwargs) -> LatencyProbe:  # noqa: ANN003
    """Return a fresh probe for *transport* (``tcp``, ``http``, ``ws``, ``icmp``)."""
    probes = {
        "tcp": TcpConnectProbe,
        "http": HttpHeadProbe,
        "ws": WebSocketProbe,
        "icmp": IcmpProbe,
    }
    try:
        return probes[transport](**kwargs)
    except KeyError:
        raise ValueError(f"Unknown latency transport: {transport}") from None


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class LatencySeriesResult:
    """Aggregated latency data for one series."""

    rtt_samples: List[float] = field(default_factory=list)
    failed_count: int = 0
    sample_count: int = 0
    latency_ms: float = 0.0
    jitter_ms: float = 0.0
    packet_loss_percent: float = 0.0

    def calculate(self) -> None:
        """Derive trimmed-mean latency, jitter, and loss from collected pings."""
        if self.rtt_samples:
            self.latency_ms = trimmed_mean(self.rtt_samples, LATENCY_TRIM_FRACTION)
            self.jitter_ms = jitter(self.rtt_samples)
        if self.sample_count:
            self.packet_loss_percent = self.failed_count / self.sample_count * 100

    def to_dict(self) -> dict:
        return {
            "pings": [round(p, 1) for p in self.rtt_samples],
            "failed": self.failed_count,
            "latency_ms": round(self.latency_ms, 1),
            "jitter_ms": round(self.jitter_ms, 3),
            "packet_loss_percent": round(self.packet_loss_percent, 2),
        }


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class LatencyTester:
    """Run latency series against one target with a single probe."""

    def __init__(self, probe: LatencyProbe, target: Endpoint) -> None:
        self.probe = probe
        self.target = target

    async def _probe(self, timeout: float) -> float:
        try:
            return await asyncio.wait_for(self.probe.probe_once(self.target, timeout), timeout)
        except asyncio.TimeoutError as exc:
            raise ProbeFailure(f"No reply within {timeout:.2f} s", cause=exc) from exc

    async def _warm_up(self, timeout: float, token: CancelToken) -> None:
        # DNS, ARP, and route caches; the result is discarded.
        token.raise_if_cancelled()
        try:
            await self._probe(timeout)
        except ProbeFailure as exc:
            LOGGER.debug("Warm-up probe to %s failed: %s", self.target.hostname, exc)
        await token.sleep(WARMUP_PROBE_PAUSE)

    async def measure_series(
        self,
        sample_count: int,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        inter_probe_delay: float = DEFAULT_INTER_PROBE_DELAY,
        on_sample: Optional[Callable[[LatencySample], None]] = None,
        token: Optional[CancelToken] = None,
    ) -> LatencySeriesResult:
        """
        One discarded warm-up probe, then *sample_count* probes.

        Failed probes count toward packet loss and are not retried.  Raises
        ``MeasurementCancelled`` if *token* fires and ``AllProbesFailed`` if
        nothing came back.
        """
        token = token or CancelToken()
        result = LatencySeriesResult(sample_count=sample_count)
        start = time.perf_counter()

        await self._warm_up(timeout, token)

        last_failure: Optional[ProbeFailure] = None
        for i in range(sample_count):
            token.raise_if_cancelled()
            try:
                rtt = await self._probe(timeout)
            except ProbeFailure as exc:
                result.failed_count += 1
                last_failure = exc
                LOGGER.debug("Probe %d to %s failed: %s", i + 1, self.target.hostname, exc)
            else:
                result.rtt_samples.append(rtt)
                if on_sample is not None and not token.is_cancelled:
                    elapsed = int((time.perf_counter() - start) * 1000)
                    on_sample(LatencySample(timestamp_offset_ms=elapsed, value=rtt))

            if i < sample_count - 1:
                await token.sleep(inter_probe_delay)

        if not result.rtt_samples:
            raise AllProbesFailed(
                f"All {sample_count} probes to {self.target.hostname} failed",
                cause=last_failure,
                connectivity=True,
            )

        result.calculate()
        return result

    async def measure_loaded_latency(
        self,
        sample_count: int,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        delay: float = DEFAULT_LOADED_LATENCY_DELAY,
        token: Optional[CancelToken] = None,
    ) -> Optional[float]:
        """
        Same loop, warm-up included, run while a transfer saturates the link.

        Returns the trimmed-mean RTT, or None on cancellation or when every
        probe failed.  Never raises.
        """
        if sample_count <= 0:
            return None
        token = token or CancelToken()
        samples: List[float] = []
        try:
            await self._warm_up(timeout, token)
            for _ in range(sample_count):
                token.raise_if_cancelled()
                try:
                    samples.append(await self._probe(timeout))
                except ProbeFailure as exc:
                    LOGGER.debug("Loaded-latency probe failed: %s", exc)
                await token.sleep(delay)
        except MeasurementCancelled:
            return None
        except MeasurementError as exc:
            LOGGER.debug("Loaded-latency series aborted: %s", exc)
            return None

        if not samples:
            return None
        return trimmed_mean(samples, LATENCY_TRIM_FRACTION)
