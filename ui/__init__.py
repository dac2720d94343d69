"""UI layer -- Rich dashboard and output formatters."""

from .dashboard import (
    ProgressDisplay,
    ScanProgress,
    console,
    print_final_results,
    print_header,
    print_latency_details,
    print_metadata,
    print_phase_status,
    print_ping_stats,
    print_quality,
    print_scan_results,
)
from .output import create_result_json, create_scan_json, format_text_result

__all__ = [
    "ProgressDisplay",
    "ScanProgress",
    "console",
    "create_result_json",
    "create_scan_json",
    "format_text_result",
    "print_final_results",
    "print_header",
    "print_latency_details",
    "print_metadata",
    "print_phase_status",
    "print_ping_stats",
    "print_quality",
    "print_scan_results",
]
