"""
Error taxonomy for measurements and scans.

Raw transport exceptions never travel past a probe or tester: they are
converted here into typed errors that carry a ``connectivity`` flag, which
the engine uses to decide between aborting the run and recording a failed
phase.  Cancellation is deliberately *not* a ``MeasurementError``.
"""
from __future__ import annotations

import asyncio
import errno
import socket
from typing import Optional

import aiohttp


_UNREACHABLE_ERRNOS = {
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.ECONNREFUSED,
}


class MeasurementError(Exception):
    """Base class for every recoverable measurement failure."""

    connectivity: bool = False

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None,
                 connectivity: Optional[bool] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.cause = cause
        if connectivity is not None:
            self.connectivity = connectivity
        elif cause is not None:
            self.connectivity = is_connectivity_error(cause)


class ProbeFailure(MeasurementError):
    """A single latency probe did not complete."""


class AllProbesFailed(MeasurementError):
    """Every probe of a latency series failed; the target is unreachable."""

    connectivity = True


class TransferFailed(MeasurementError):
    """A download or upload aborted on a bad status or an I/O error."""

    def __init__(self, message: str = "", *, status: Optional[int] = None,
                 cause: Optional[BaseException] = None,
                 connectivity: Optional[bool] = None) -> None:
        if not message:
            message = f"HTTP {status}" if status is not None else f"transfer failed: {cause}"
        super().__init__(message, cause=cause, connectivity=connectivity)
        self.status = status


class TransferTimeout(MeasurementError):
    """A transfer ran out of time before producing a single sample."""


class MetadataUnavailable(MeasurementError):
    """Neither metadata source answered."""


class NoConnectivity(MeasurementError):
    """Run-terminal error: the network (or the endpoint) is unreachable."""

    connectivity = True

    def __init__(self, message: str = "No internet connection", *,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause=cause, connectivity=True)


class PhaseFailed(MeasurementError):
    """Run-terminal wrapper used by the strict error policy."""

    def __init__(self, phase: str, reason: str) -> None:
        super().__init__(f"{phase} phase failed: {reason}")
        self.phase = phase
        self.reason = reason


class ScanError(Exception):
    """The scan could not start (bad base address, no local address)."""


class MeasurementCancelled(Exception):
    """Raised when a cancel token fires.  Not an error."""

    def __init__(self, message: str = "Canceled by user") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def is_connectivity_error(exc: BaseException) -> bool:
    """Return True when *exc* means "could not reach the other side at all"."""
    if isinstance(exc, MeasurementError):
        return exc.connectivity
    if isinstance(exc, (aiohttp.ClientConnectorError, socket.gaierror, ConnectionRefusedError)):
        return True
    if isinstance(exc, aiohttp.ServerTimeoutError):
        # connect timeouts surface as ServerTimeoutError / ConnectionTimeoutError
        return "connect" in str(exc).lower()
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return True
    return False


def describe(exc: BaseException) -> str:
    """Short human-readable reason used in phase results."""
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out"
    text = str(exc)
    return text if text else exc.__class__.__name__
