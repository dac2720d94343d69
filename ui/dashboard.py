"""
Rich-based terminal dashboard for measurement and scan results.

All formatting helpers live in ``netgauge.stats`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from netgauge.grading import grade_color
from netgauge.models import (
    HostProbeResult,
    MeasurementBundle,
    NetworkMetadata,
    NetworkQuality,
    Phase,
    PhaseStatus,
    Sample,
    SampleKind,
)
from netgauge.monitor import PingStats
from netgauge.stats import LatencyStats, format_latency, format_speed

console = Console()

_STATUS_STYLE = {
    PhaseStatus.SUCCESS: "green",
    PhaseStatus.FAILED: "red",
    PhaseStatus.TIMED_OUT: "yellow",
    PhaseStatus.CANCELED: "dim",
}


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header(title: str = "netgauge") -> None:
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]{title}[/bold cyan]\n"
            "[dim]Latency, throughput and connection quality[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_metadata(meta: Optional[NetworkMetadata]) -> None:
    if meta is None:
        return
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    rows = [
        ("IP Address:", meta.ip),
        ("Connected via:", meta.connected_via),
        ("Network:", meta.network_name),
        ("ASN:", meta.asn),
        ("Country:", meta.country),
        ("Server:", meta.server_location),
        ("TLS / HTTP:", " / ".join(v for v in (meta.tls_version, meta.http_version) if v) or None),
    ]
    for label, value in rows:
        if value:
            table.add_row(label, value)
    console.print(Panel(table, title="[bold]Connection[/bold]", border_style="blue"))


def print_latency_details(bundle: MeasurementBundle) -> None:
    """Latency statistics computed from the collected series."""
    pings = [s.rtt_ms for s in bundle.latency_series]
    if not pings or not bundle.has_latency:
        return
    stats = LatencyStats(samples=pings)
    stats.calculate()

    table = Table(title="Latency Details", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Latency", format_latency(bundle.latency_ms))
    table.add_row("Min", format_latency(stats.min))
    table.add_row("Max", format_latency(stats.max))
    table.add_row("Median", format_latency(stats.median))
    table.add_row("Jitter", f"{bundle.jitter_ms:.2f} ms")
    table.add_row("Packet Loss", f"{bundle.packet_loss_percent:.1f}%")
    table.add_row("Samples", str(stats.count))
    console.print(table)


def print_phase_status(bundle: MeasurementBundle) -> None:
    table = Table(title="Phases", box=box.SIMPLE)
    table.add_column("Phase", style="bold")
    table.add_column("Status")
    table.add_column("Detail", style="dim")
    for phase in Phase:
        result = bundle.phase_results.get(phase)
        if result is None:
            table.add_row(phase.value, "[dim]skipped[/dim]", "")
            continue
        style = _STATUS_STYLE[result.status]
        detail = "" if result.is_success else (result.reason or "")
        table.add_row(phase.value, f"[{style}]{result.status.value}[/{style}]", detail)
    console.print(table)


def print_quality(quality: Optional[NetworkQuality]) -> None:
    if quality is None:
        return
    table = Table(title="Network Quality", box=box.ROUNDED)
    table.add_column("Scenario", style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Grade", justify="center")
    for verdict in quality:
        color = grade_color(verdict.grade)
        table.add_row(
            verdict.scenario,
            f"{verdict.score:.0f}",
            f"[{color}]{verdict.grade.value.upper()}[/{color}]",
        )
    console.print(table)


def print_final_results(bundle: MeasurementBundle) -> None:
    def _speed(value: Optional[float]) -> str:
        return format_speed(value) if value is not None else "N/A"

    ping = format_latency(bundle.latency_ms) if bundle.has_latency else "N/A"
    jitter = f"{bundle.jitter_ms:.2f} ms" if bundle.jitter_ms is not None else "N/A"
    server = bundle.metadata.server_location if bundle.metadata else None

    lines = []
    if server:
        lines.append(f"[bold cyan]Server:[/bold cyan] {server}\n")
    lines.append(
        f"[bold white]   Ping:[/bold white]  [bold yellow]{ping}[/bold yellow]  "
        f"[dim](jitter: {jitter})[/dim]"
    )
    if bundle.packet_loss_percent:
        lines.append(f"[bold white]   Packet Loss:[/bold white]  [red]{bundle.packet_loss_percent:.1f}%[/red]")
    lines.append(f"[bold white]   Download:[/bold white]  [bold green]{_speed(bundle.download_mbps)}[/bold green]")
    if bundle.loaded_latency_ms is not None:
        lines.append(f"[bold white]   Loaded Latency:[/bold white]  {format_latency(bundle.loaded_latency_ms)}")
    lines.append(f"[bold white]   Upload:[/bold white]  [bold blue]{_speed(bundle.upload_mbps)}[/bold blue]")

    console.print()
    console.print(Panel.fit("\n".join(lines), title="[bold]Results[/bold]", border_style="cyan"))
    console.print()


def print_scan_results(hosts: List[HostProbeResult], base_address: str) -> None:
    table = Table(title=f"Devices on {base_address}/24", box=box.ROUNDED)
    table.add_column("Address", style="bold")
    table.add_column("Hostname")
    table.add_column("RTT", justify="right")
    for host in hosts:
        table.add_row(host.address, host.hostname or "[dim]-[/dim]", format_latency(host.rtt_ms))
    console.print(table)
    console.print(f"[dim]{len(hosts)} reachable host(s)[/dim]")


def print_ping_stats(host: str, stats: PingStats) -> None:
    color = "green" if stats.reachable else "red"
    console.print(
        f"[{color}]{host}[/{color}]  {stats.ping_text:>8}  "
        f"[dim]{stats.packet_loss_text} ({stats.lost}/{stats.sent} lost)[/dim]"
    )


# ---------------------------------------------------------------------------
# Progress displays
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Spinner line showing the current phase and the latest sample."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            TextColumn("[bold cyan]{task.fields[value]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None

    def start(self) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task("Starting", total=None, value="")

    def phase(self, phase: Phase) -> None:
        if self._task_id is None:
            return
        self.progress.update(self._task_id, description=phase.value.capitalize(), value="...")

    def sample(self, sample: Sample) -> None:
        if self._task_id is None:
            return
        if sample.kind is SampleKind.LATENCY:
            text = format_latency(sample.value)
        else:
            text = format_speed(sample.value)
        self.progress.update(self._task_id, value=text)

    def stop(self) -> None:
        self.progress.stop()


class ScanProgress:
    """Progress bar for a subnet sweep."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            MofNCompleteColumn(),
            TextColumn("[green]{task.fields[found]} found[/green]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None
        self._found = 0

    def start(self, total: int = 254) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task("Scanning", total=total, found=0)
        self._found = 0

    def update(self, completed: int, total: int) -> None:
        if self._task_id is None:
            return
        self.progress.update(self._task_id, completed=completed, total=total)

    def device_found(self, host: HostProbeResult) -> None:
        self._found += 1
        if self._task_id is not None:
            self.progress.update(self._task_id, found=self._found)

    def stop(self) -> None:
        self.progress.stop()
