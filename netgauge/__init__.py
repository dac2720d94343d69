"""Network measurement library -- latency, throughput, quality grading, and subnet scanning."""

from .cancel import CancelToken, run_cancellable
from .config import ErrorPolicy, RunOptions, load_config, options_from_config, save_config
from .engine import EngineState, MeasurementEngine, OutcomeKind, RunOutcome
from .errors import (
    AllProbesFailed,
    MeasurementCancelled,
    MeasurementError,
    MetadataUnavailable,
    NoConnectivity,
    PhaseFailed,
    ProbeFailure,
    ScanError,
    TransferFailed,
    TransferTimeout,
)
from .grading import grade_for, score
from .latency import (
    HttpHeadProbe,
    IcmpProbe,
    LatencyProbe,
    LatencySeriesResult,
    LatencyTester,
    TcpConnectProbe,
    WebSocketProbe,
    make_probe,
)
from .metadata import MetadataClient
from .models import (
    Endpoint,
    Grade,
    HostProbeResult,
    LatencySample,
    MeasurementBundle,
    NetworkMetadata,
    NetworkQuality,
    Phase,
    PhaseResult,
    PhaseStatus,
    QualityVerdict,
    Sample,
    ThroughputSample,
)
from .monitor import PingMonitor, PingStats
from .sampling import Direction, RateSampler, TransferResult
from .scanner import SubnetScanner, resolve_hostnames
from .stats import (
    LatencyStats,
    final_rate,
    format_latency,
    format_speed,
    jitter,
    median,
    percentile,
    trimmed_mean,
)
from .throughput import ThroughputProbe

__version__ = "1.0.0"

__all__ = [
    "AllProbesFailed",
    "CancelToken",
    "Direction",
    "Endpoint",
    "EngineState",
    "ErrorPolicy",
    "Grade",
    "HostProbeResult",
    "HttpHeadProbe",
    "IcmpProbe",
    "LatencyProbe",
    "LatencySample",
    "LatencySeriesResult",
    "LatencyStats",
    "LatencyTester",
    "MeasurementBundle",
    "MeasurementCancelled",
    "MeasurementEngine",
    "MeasurementError",
    "MetadataClient",
    "MetadataUnavailable",
    "NetworkMetadata",
    "NetworkQuality",
    "NoConnectivity",
    "OutcomeKind",
    "Phase",
    "PhaseFailed",
    "PhaseResult",
    "PhaseStatus",
    "PingMonitor",
    "PingStats",
    "ProbeFailure",
    "QualityVerdict",
    "RateSampler",
    "RunOptions",
    "RunOutcome",
    "Sample",
    "ScanError",
    "SubnetScanner",
    "TcpConnectProbe",
    "ThroughputProbe",
    "ThroughputSample",
    "TransferFailed",
    "TransferResult",
    "TransferTimeout",
    "WebSocketProbe",
    "final_rate",
    "format_latency",
    "format_speed",
    "grade_for",
    "jitter",
    "load_config",
    "make_probe",
    "median",
    "options_from_config",
    "percentile",
    "resolve_hostnames",
    "run_cancellable",
    "save_config",
    "score",
    "trimmed_mean",
]
