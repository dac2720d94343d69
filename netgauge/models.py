"""
Data model shared by the engine, the probes, and the scanner.

Everything here is an immutable dataclass except the enums.  Each model
offers ``to_dict()`` for JSON export.
"""
from __future__ import annotations

import enum
import ipaddress
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple

from .constants import (
    DEFAULT_HOSTNAME,
    DEFAULT_PORT,
    DEFAULT_SCHEME,
    DOWNLOAD_PATH,
    META_PATH,
    TRACE_PATH,
    UPLOAD_PATH,
)


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Endpoint:
    """A measurement host and the URLs derived from it."""

    hostname: str = DEFAULT_HOSTNAME
    port: int = DEFAULT_PORT
    scheme: str = DEFAULT_SCHEME

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Endpoint:
        host, _, host_port = str(data.get("host", "")).partition(":")
        scheme = str(data.get("scheme", DEFAULT_SCHEME))
        default_port = host_port or (443 if scheme in ("https", "wss") else 80)
        return cls(
            hostname=data.get("hostname", host or DEFAULT_HOSTNAME),
            port=int(data.get("port", default_port)),
            scheme=scheme,
        )

    # -- Derived URLs -------------------------------------------------------

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.hostname}:{self.port}"

    def download_url(self, nbytes: int) -> str:
        return f"{self.base_url}{DOWNLOAD_PATH}?bytes={nbytes}"

    @property
    def upload_url(self) -> str:
        return f"{self.base_url}{UPLOAD_PATH}"

    @property
    def meta_url(self) -> str:
        return f"{self.base_url}{META_PATH}"

    @property
    def trace_url(self) -> str:
        return f"{self.base_url}{TRACE_PATH}"

    @property
    def ws_url(self) -> str:
        """WebSocket endpoint for PING/PONG latency probing."""
        ws_scheme = "wss" if self.scheme == "https" else "ws"
        return f"{ws_scheme}://{self.hostname}:{self.port}/ws"

    def to_dict(self) -> Dict[str, Any]:
        return {"hostname": self.hostname, "port": self.port, "scheme": self.scheme}


# ---------------------------------------------------------------------------
# Samples (tagged union)
# ---------------------------------------------------------------------------

class SampleKind(str, enum.Enum):
    THROUGHPUT = "throughput"
    LATENCY = "latency"


@dataclass(frozen=True)
class Sample:
    """One timestamped measurement; see the two concrete kinds below."""

    timestamp_offset_ms: int
    value: float

    # Set only by the concrete kinds
    kind: ClassVar[Optional[SampleKind]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value if self.kind is not None else None,
            "t_ms": self.timestamp_offset_ms,
            "value": round(self.value, 3),
        }


@dataclass(frozen=True)
class ThroughputSample(Sample):
    """Instantaneous Mbps over the preceding sampling interval."""

    kind = SampleKind.THROUGHPUT

    @property
    def mbps(self) -> float:
        return self.value


@dataclass(frozen=True)
class LatencySample(Sample):
    """A single round-trip time in milliseconds."""

    kind = SampleKind.LATENCY

    @property
    def rtt_ms(self) -> float:
        return self.value


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------

class Phase(str, enum.Enum):
    METADATA = "metadata"
    LATENCY = "latency"
    DOWNLOAD = "download"
    UPLOAD = "upload"


class PhaseStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELED = "canceled"


@dataclass(frozen=True)
class PhaseResult:
    """How one phase settled.  Created once, never mutated."""

    status: PhaseStatus
    payload: Any = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, payload: Any = None) -> PhaseResult:
        return cls(PhaseStatus.SUCCESS, payload=payload)

    @classmethod
    def failed(cls, reason: str) -> PhaseResult:
        return cls(PhaseStatus.FAILED, reason=reason)

    @classmethod
    def timed_out(cls) -> PhaseResult:
        return cls(PhaseStatus.TIMED_OUT, reason="Operation timed out")

    @classmethod
    def canceled(cls) -> PhaseResult:
        return cls(PhaseStatus.CANCELED, reason="Canceled by user")

    @property
    def is_success(self) -> bool:
        return self.status is PhaseStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"status": self.status.value}
        if self.reason:
            out["reason"] = self.reason
        return out


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NetworkMetadata:
    """Descriptive connection facts; every field is optional."""

    ip: Optional[str] = None
    connected_via: Optional[str] = None   # "IPv4" / "IPv6"
    server_location: Optional[str] = None
    network_name: Optional[str] = None
    asn: Optional[str] = None
    country: Optional[str] = None
    tls_version: Optional[str] = None
    http_version: Optional[str] = None
    colo: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.ip,
            "connected_via": self.connected_via,
            "server_location": self.server_location,
            "network_name": self.network_name,
            "asn": self.asn,
            "country": self.country,
            "tls_version": self.tls_version,
            "http_version": self.http_version,
            "colo": self.colo,
        }


# ---------------------------------------------------------------------------
# Quality verdicts
# ---------------------------------------------------------------------------

class Grade(str, enum.Enum):
    BAD = "bad"
    POOR = "poor"
    AVERAGE = "average"
    GOOD = "good"
    GREAT = "great"


@dataclass(frozen=True)
class QualityVerdict:
    score: float
    grade: Grade
    scenario: str

    def to_dict(self) -> Dict[str, Any]:
        return {"scenario": self.scenario, "score": round(self.score, 1), "grade": self.grade.value}


@dataclass(frozen=True)
class NetworkQuality:
    streaming: QualityVerdict
    gaming: QualityVerdict
    rtc: QualityVerdict

    def __iter__(self):
        return iter((self.streaming, self.gaming, self.rtc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "streaming": self.streaming.to_dict(),
            "gaming": self.gaming.to_dict(),
            "rtc": self.rtc.to_dict(),
        }


# ---------------------------------------------------------------------------
# Measurement bundle
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MeasurementBundle:
    """Everything one engine run produced.  Frozen when the run ends."""

    download_mbps: Optional[float] = None
    upload_mbps: Optional[float] = None
    latency_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    packet_loss_percent: Optional[float] = None
    loaded_latency_ms: Optional[float] = None
    metadata: Optional[NetworkMetadata] = None
    download_series: Tuple[ThroughputSample, ...] = ()
    upload_series: Tuple[ThroughputSample, ...] = ()
    latency_series: Tuple[LatencySample, ...] = ()
    phase_results: Mapping[Phase, PhaseResult] = field(default_factory=dict)
    quality: Optional[NetworkQuality] = None

    @property
    def has_download(self) -> bool:
        return self.download_mbps is not None

    @property
    def has_upload(self) -> bool:
        return self.upload_mbps is not None

    @property
    def has_latency(self) -> bool:
        return self.latency_ms is not None

    @property
    def is_empty(self) -> bool:
        return not self.phase_results

    def to_dict(self) -> Dict[str, Any]:
        def _r(value: Optional[float], digits: int = 2) -> Optional[float]:
            return None if value is None else round(value, digits)

        return {
            "download_mbps": _r(self.download_mbps),
            "upload_mbps": _r(self.upload_mbps),
            "latency_ms": _r(self.latency_ms, 1),
            "jitter_ms": _r(self.jitter_ms, 3),
            "packet_loss_percent": _r(self.packet_loss_percent),
            "loaded_latency_ms": _r(self.loaded_latency_ms, 1),
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "download_series": [s.to_dict() for s in self.download_series],
            "upload_series": [s.to_dict() for s in self.upload_series],
            "latency_series": [s.to_dict() for s in self.latency_series],
            "phases": {p.value: r.to_dict() for p, r in self.phase_results.items()},
            "quality": self.quality.to_dict() if self.quality else None,
        }


# ---------------------------------------------------------------------------
# Subnet scan
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HostProbeResult:
    address: str
    reachable: bool
    rtt_ms: float = 0.0
    hostname: Optional[str] = None

    @property
    def sort_key(self) -> int:
        return int(ipaddress.ip_address(self.address))

    def with_hostname(self, hostname: Optional[str]) -> HostProbeResult:
        return HostProbeResult(self.address, self.reachable, self.rtt_ms, hostname)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "reachable": self.reachable,
            "rtt_ms": round(self.rtt_ms, 2),
            "hostname": self.hostname,
        }
