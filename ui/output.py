"""
Output formatting -- JSON export and plain text.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from netgauge.engine import RunOutcome
from netgauge.errors import describe
from netgauge.models import HostProbeResult, MeasurementBundle


def create_result_json(outcome: RunOutcome) -> Dict[str, Any]:
    """JSON-serialisable dict for one engine run."""
    result: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "outcome": outcome.kind.value,
    }
    if outcome.error is not None:
        result["error"] = describe(outcome.error)
    result.update(outcome.bundle.to_dict())
    return result


def create_scan_json(
    base_address: str, hosts: List[HostProbeResult], canceled: bool = False
) -> Dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "subnet": f"{base_address}/24",
        "canceled": canceled,
        "hosts": [h.to_dict() for h in hosts],
    }


# ---------------------------------------------------------------------------
# Plain-text helpers
# ---------------------------------------------------------------------------

def _fmt(value: Optional[float], unit: str, digits: int = 2) -> str:
    return "N/A" if value is None else f"{value:.{digits}f} {unit}"


def format_text_result(bundle: MeasurementBundle) -> str:
    sep = "=" * 50
    mid = "-" * 50
    meta = bundle.metadata
    lines = [sep, "Measurement Results", sep]
    if meta is not None:
        lines.append(f"Server: {meta.server_location or 'unknown'}")
        lines.append(f"Network: {meta.network_name or 'unknown'}")
        lines.append(f"IP: {meta.ip or 'unknown'}")
        lines.append(mid)
    lines.append(
        f"Ping: {_fmt(bundle.latency_ms, 'ms', 1)} (jitter: {_fmt(bundle.jitter_ms, 'ms')})"
    )
    if bundle.packet_loss_percent:
        lines.append(f"Packet Loss: {bundle.packet_loss_percent:.1f}%")
    lines.append(f"Download: {_fmt(bundle.download_mbps, 'Mbps')}")
    lines.append(f"Upload: {_fmt(bundle.upload_mbps, 'Mbps')}")
    if bundle.quality is not None:
        lines.append(mid)
        for verdict in bundle.quality:
            lines.append(f"{verdict.scenario}: {verdict.score:.0f} ({verdict.grade.value})")
    lines.append(sep)
    return "\n".join(lines)
