"""
Subnet scanner.

Sweeps the 254 host addresses of a /24 with a bounded pool of asyncio
workers.  A single ``asyncio.Queue`` hands out one address at a time; each
worker probes it once, optionally reverse-resolves reachable hosts, records
the result and asks for the next address.
"""
from __future__ import annotations

import asyncio
import ipaddress
import logging
import os
import socket
from typing import Callable, Dict, Iterable, List, Optional

from .cancel import CancelToken
from .constants import (
    CONSTRAINED_SCAN_CONCURRENCY,
    DEFAULT_HOST_TIMEOUT,
    DEFAULT_SCAN_CONCURRENCY,
    HOSTNAME_RESOLVE_CONCURRENCY,
    MAX_SCAN_CONCURRENCY,
    REVERSE_DNS_TIMEOUT,
)
from .errors import ProbeFailure, ScanError
from .latency import IcmpProbe, LatencyProbe
from .models import Endpoint, HostProbeResult

LOGGER = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]
DeviceFn = Callable[[HostProbeResult], None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def default_concurrency() -> int:
    """Fewer workers on machines with few cores."""
    cpus = os.cpu_count() or 1
    return CONSTRAINED_SCAN_CONCURRENCY if cpus < 4 else DEFAULT_SCAN_CONCURRENCY


def subnet_hosts(base_address: str) -> List[str]:
    """Return ``.1`` through ``.254`` of the /24 containing *base_address*."""
    try:
        network = ipaddress.IPv4Network(f"{base_address}/24", strict=False)
    except ValueError as exc:
        raise ScanError(f"Invalid base address: {base_address}") from exc
    return [str(host) for host in network.hosts()]


def detect_local_address() -> str:
    """
    Return this machine's primary IPv4 address.

    Connecting a UDP socket sends nothing; it only makes the kernel pick the
    outbound interface.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("8.8.8.8", 80))
        address = sock.getsockname()[0]
    except OSError as exc:
        raise ScanError("Could not determine the local IPv4 address") from exc
    finally:
        sock.close()
    if address.startswith("0."):
        raise ScanError("Could not determine the local IPv4 address")
    return address


async def resolve_hostname(address: str, timeout: float = REVERSE_DNS_TIMEOUT) -> Optional[str]:
    """Reverse-resolve *address*; any failure or a numeric answer yields None."""
    loop = asyncio.get_running_loop()
    try:
        host, _ = await asyncio.wait_for(
            loop.getnameinfo((address, 0), socket.NI_NAMEREQD),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError) as exc:
        LOGGER.debug("Reverse lookup for %s failed: %s", address, exc)
        return None
    if not host or host == address:
        return None
    return host


async def resolve_hostnames(
    hosts: Iterable[HostProbeResult],
    concurrency: int = HOSTNAME_RESOLVE_CONCURRENCY,
    timeout: float = REVERSE_DNS_TIMEOUT,
    on_progress: Optional[ProgressFn] = None,
) -> List[HostProbeResult]:
    """Fill in hostnames for an already collected host list, order preserved."""
    hosts = list(hosts)
    resolved: List[Optional[HostProbeResult]] = [None] * len(hosts)
    queue: asyncio.Queue = asyncio.Queue()
    for index, host in enumerate(hosts):
        queue.put_nowait((index, host))
    done = 0

    async def _worker() -> None:
        nonlocal done
        while True:
            try:
                index, host = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            hostname = await resolve_hostname(host.address, timeout)
            resolved[index] = host.with_hostname(hostname) if hostname else host
            done += 1
            if on_progress is not None:
                on_progress(done, len(hosts))

    workers = max(1, min(concurrency, len(hosts)))
    await asyncio.gather(*(_worker() for _ in range(workers)))
    return [r for r in resolved if r is not None]


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

class SubnetScanner:
    """
    Bounded-concurrency /24 sweep.

    ``probe`` defaults to an ``IcmpProbe`` sized to the worker pool; any
    ``LatencyProbe`` can be injected.  Callbacks:

    * ``on_progress(completed, total)`` -- after every address, reachable or not
    * ``on_device_found(result)`` -- once per reachable host
    """

    def __init__(self, probe: Optional[LatencyProbe] = None) -> None:
        self._probe = probe
        self.on_progress: Optional[ProgressFn] = None
        self.on_device_found: Optional[DeviceFn] = None

    async def scan(
        self,
        base_address: Optional[str] = None,
        timeout_per_host: float = DEFAULT_HOST_TIMEOUT,
        concurrency: Optional[int] = None,
        resolve_hostnames: bool = False,
        token: Optional[CancelToken] = None,
    ) -> List[HostProbeResult]:
        """
        Probe every host of the /24 around *base_address* (the local address
        when omitted) and return the reachable ones sorted by address.

        Cancelling *token* stops dispatch; the partial list is returned.
        """
        token = token or CancelToken()
        if base_address is None:
            base_address = detect_local_address()
        addresses = subnet_hosts(base_address)
        total = len(addresses)

        concurrency = concurrency or default_concurrency()
        concurrency = max(1, min(concurrency, MAX_SCAN_CONCURRENCY))

        LOGGER.info(
            "Scanning %s/24 (%d hosts, concurrency %d)", base_address, total, concurrency
        )

        queue: asyncio.Queue = asyncio.Queue()
        for address in addresses:
            queue.put_nowait(address)

        found: Dict[str, HostProbeResult] = {}
        completed = 0
        probe = self._probe or IcmpProbe(max_workers=concurrency)

        async def _worker() -> None:
            nonlocal completed
            while not token.is_cancelled:
                try:
                    address = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                result = await self._probe_host(probe, address, timeout_per_host)
                if result.reachable and resolve_hostnames and not token.is_cancelled:
                    result = result.with_hostname(await resolve_hostname(address))

                if result.reachable and address not in found:
                    found[address] = result
                    if self.on_device_found is not None:
                        self.on_device_found(result)

                completed += 1
                if self.on_progress is not None:
                    self.on_progress(completed, total)

        async with probe:
            workers = [asyncio.create_task(_worker()) for _ in range(concurrency)]
            try:
                await asyncio.gather(*workers)
            finally:
                for task in workers:
                    task.cancel()
                await asyncio.gather(*workers, return_exceptions=True)

        if token.is_cancelled:
            LOGGER.info("Scan canceled after %d of %d hosts", completed, total)
        else:
            LOGGER.info("Scan finished: %d of %d hosts reachable", len(found), total)

        return sorted(found.values(), key=lambda r: r.sort_key)

    @staticmethod
    async def _probe_host(probe: LatencyProbe, address: str, timeout: float) -> HostProbeResult:
        try:
            rtt = await asyncio.wait_for(
                probe.probe_once(Endpoint(hostname=address), timeout),
                timeout=timeout + 1.0,
            )
        except (ProbeFailure, asyncio.TimeoutError):
            return HostProbeResult(address=address, reachable=False)
        return HostProbeResult(address=address, reachable=True, rtt_ms=rtt)
