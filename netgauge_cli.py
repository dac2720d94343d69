#!/usr/bin/env python3
"""
netgauge -- network measurement from the terminal.

Usage::

    netgauge                          # rich dashboard
    netgauge --simple                 # plain text
    netgauge --json                   # JSON to stdout
    netgauge --transport http         # HTTP HEAD latency probes
    netgauge --strict                 # any failed phase ends the run
    netgauge --scan                   # sweep the local /24
    netgauge --scan 192.168.1.0 --resolve
    netgauge --monitor 192.168.1.1    # continuous ping, Ctrl-C to stop
    netgauge --show-config            # config file path and effective options
"""
from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Callable, Dict, Optional

from netgauge.cancel import CancelToken
from netgauge.config import (
    LATENCY_TRANSPORTS,
    RunOptions,
    config_path,
    load_config,
    options_from_config,
)
from netgauge.constants import DEFAULT_HOST_TIMEOUT, MAX_SCAN_CONCURRENCY
from netgauge.engine import MeasurementEngine, RunOutcome
from netgauge.errors import ScanError, describe
from netgauge.logging_setup import configure_logging
from netgauge.monitor import PingMonitor
from netgauge.scanner import SubnetScanner, detect_local_address
from ui.dashboard import (
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
from ui.output import create_result_json, create_scan_json, format_text_result


# ---------------------------------------------------------------------------
# Parameter handling
# ---------------------------------------------------------------------------

def _build_options(args: argparse.Namespace, config: Optional[Dict[str, Any]] = None) -> RunOptions:
    """Merge CLI overrides over the stored config.  Raises ``ValueError``."""
    merged = dict(config if config is not None else load_config())
    overrides = {
        "ping_count": args.ping_count,
        "download_bytes": args.download_bytes,
        "upload_bytes": args.upload_bytes,
        "latency_transport": args.transport,
        "run_deadline": args.deadline,
    }
    merged.update({k: v for k, v in overrides.items() if v is not None})
    if args.strict:
        merged["error_policy"] = "strict"
    if args.endpoint:
        endpoint = dict(merged.get("endpoint") or {})
        endpoint["hostname"] = args.endpoint
        merged["endpoint"] = endpoint
    return options_from_config(merged)


def _validate_scan(timeout: float, concurrency: Optional[int]) -> None:
    """Raise ``ValueError`` if any scan parameter is out of range."""
    if timeout <= 0:
        raise ValueError("Host timeout must be > 0")
    if concurrency is not None and not 1 <= concurrency <= MAX_SCAN_CONCURRENCY:
        raise ValueError(f"Concurrency must be between 1 and {MAX_SCAN_CONCURRENCY}")


def _install_cancel(cancel: Callable[[], None]) -> bool:
    """Map SIGINT to *cancel* on the running loop.  False where unsupported."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel)
    except (NotImplementedError, RuntimeError):
        return False
    return True


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------

async def run_measurement(
    options: RunOptions, *, json_output: bool = False, simple: bool = False
) -> RunOutcome:
    show_ui = not json_output and not simple

    engine = MeasurementEngine(options)
    _install_cancel(engine.cancel)

    progress: Optional[ProgressDisplay] = None
    if show_ui:
        print_header()
        progress = ProgressDisplay()
        engine.on_phase_changed = progress.phase
        engine.on_sample = progress.sample
        progress.start()

    try:
        outcome = await engine.run()
    finally:
        if progress is not None:
            progress.stop()

    bundle = outcome.bundle
    if json_output:
        print(json.dumps(create_result_json(outcome), indent=2))
    elif outcome.is_canceled:
        console.print("\n[yellow]Test cancelled by user[/yellow]")
    elif simple:
        print(format_text_result(bundle))
    else:
        print_metadata(bundle.metadata)
        print_latency_details(bundle)
        print_final_results(bundle)
        print_quality(bundle.quality)
        print_phase_status(bundle)

    if outcome.is_errored and not json_output:
        console.print(f"[red]Error: {describe(outcome.error)}[/red]")

    return outcome


async def run_scan(
    base_address: Optional[str],
    *,
    timeout: float = DEFAULT_HOST_TIMEOUT,
    concurrency: Optional[int] = None,
    resolve: bool = False,
    json_output: bool = False,
) -> list:
    token = CancelToken()
    _install_cancel(token.cancel)

    base = base_address or detect_local_address()
    scanner = SubnetScanner()
    progress: Optional[ScanProgress] = None
    if not json_output:
        progress = ScanProgress()
        scanner.on_progress = progress.update
        scanner.on_device_found = progress.device_found
        progress.start()

    try:
        hosts = await scanner.scan(
            base,
            timeout_per_host=timeout,
            concurrency=concurrency,
            resolve_hostnames=resolve,
            token=token,
        )
    finally:
        if progress is not None:
            progress.stop()

    if json_output:
        print(json.dumps(create_scan_json(base, hosts, canceled=token.is_cancelled), indent=2))
    else:
        if token.is_cancelled:
            console.print("[yellow]Scan cancelled, showing partial results[/yellow]")
        print_scan_results(hosts, base)
    return hosts


async def run_monitor(host: str, *, json_output: bool = False) -> None:
    token = CancelToken()
    _install_cancel(token.cancel)
    async for stats in PingMonitor(host).stream(token):
        if json_output:
            print(json.dumps(stats.to_dict()), flush=True)
        else:
            print_ping_stats(host, stats)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def show_config(options: RunOptions) -> None:
    """Print the config file location and the options a run would use."""
    console.print(f"[dim]Config file:[/dim] {config_path()}")
    console.print_json(json.dumps(options.to_dict()))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netgauge",
        description="netgauge -- latency, throughput and subnet scanning",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug details to stderr")

    # Measurement parameters (override ~/.netgauge/config.json)
    parser.add_argument("--ping-count", type=int, metavar="N", help="Number of latency probes")
    parser.add_argument("--download-bytes", type=int, metavar="BYTES", help="Download size in bytes")
    parser.add_argument("--upload-bytes", type=int, metavar="BYTES", help="Upload size in bytes")
    parser.add_argument("--transport", choices=LATENCY_TRANSPORTS, help="Latency probe transport")
    parser.add_argument("--deadline", type=float, metavar="SECS", help="Global run deadline in seconds")
    parser.add_argument("--endpoint", metavar="HOST", help="Measurement endpoint hostname")
    parser.add_argument("--strict", action="store_true", help="End the run on any failed phase")
    parser.add_argument("--show-config", action="store_true", help="Show the config file path and effective options")

    # Scanner
    parser.add_argument("--scan", nargs="?", const="", metavar="BASE", help="Scan the /24 around BASE (default: local address)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_HOST_TIMEOUT, metavar="SECS", help="Per-host scan timeout (default: 1)")
    parser.add_argument("--concurrency", type=int, metavar="N", help="Concurrent scan probes")
    parser.add_argument("--resolve", action="store_true", help="Reverse-resolve reachable hosts")

    # Monitor
    parser.add_argument("--monitor", metavar="HOST", help="Continuously ping HOST until Ctrl-C")
    return parser


def main(argv: Optional[list] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "WARNING", console=console)

    try:
        if args.show_config:
            show_config(_build_options(args))
            return

        if args.monitor:
            asyncio.run(run_monitor(args.monitor, json_output=args.json))
            return

        if args.scan is not None:
            _validate_scan(args.timeout, args.concurrency)
            asyncio.run(
                run_scan(
                    args.scan or None,
                    timeout=args.timeout,
                    concurrency=args.concurrency,
                    resolve=args.resolve,
                    json_output=args.json,
                )
            )
            return

        options = _build_options(args)
        outcome = asyncio.run(
            run_measurement(options, json_output=args.json, simple=args.simple)
        )
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except ScanError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled by user[/yellow]")
        sys.exit(1)

    if outcome.is_errored:
        sys.exit(1)


if __name__ == "__main__":
    main()
