"""
Measurement engine.

Runs the phases ``metadata -> latency -> download -> upload`` strictly one
after another and resolves every run to exactly one terminal outcome:

* ``COMPLETED`` -- all phases settled (some may have failed softly)
* ``CANCELED``  -- ``cancel()`` was called or the run deadline expired
* ``ERRORED``   -- a run-terminal failure, e.g. no connectivity

The engine never lets an exception escape ``run()``.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from . import grading
from .cancel import CancelToken, run_cancellable
from .config import ErrorPolicy, RunOptions
from .errors import (
    MeasurementCancelled,
    MeasurementError,
    NoConnectivity,
    PhaseFailed,
    TransferTimeout,
    describe,
)
from .latency import LatencyProbe, LatencySeriesResult, LatencyTester, make_probe
from .metadata import MetadataClient
from .models import (
    LatencySample,
    MeasurementBundle,
    NetworkMetadata,
    Phase,
    PhaseResult,
    PhaseStatus,
    Sample,
    ThroughputSample,
)
from .sampling import Direction
from .throughput import ThroughputProbe

LOGGER = logging.getLogger(__name__)


class EngineState(str, enum.Enum):
    IDLE = "idle"
    METADATA = "metadata"
    LATENCY = "latency"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    COMPLETED = "completed"
    CANCELED = "canceled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (EngineState.COMPLETED, EngineState.CANCELED, EngineState.ERRORED)


class OutcomeKind(str, enum.Enum):
    COMPLETED = "completed"
    CANCELED = "canceled"
    ERRORED = "errored"


@dataclass(frozen=True)
class RunOutcome:
    """The single terminal outcome of a run."""

    kind: OutcomeKind
    bundle: MeasurementBundle
    error: Optional[BaseException] = None

    @property
    def is_completed(self) -> bool:
        return self.kind is OutcomeKind.COMPLETED

    @property
    def is_canceled(self) -> bool:
        return self.kind is OutcomeKind.CANCELED

    @property
    def is_errored(self) -> bool:
        return self.kind is OutcomeKind.ERRORED


# ---------------------------------------------------------------------------
# Per-run accumulator
# ---------------------------------------------------------------------------

@dataclass
class _RunState:
    """Mutable scratch space for one run; frozen into a bundle at the end."""

    active: Optional[Phase] = None
    download_mbps: Optional[float] = None
    upload_mbps: Optional[float] = None
    latency_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    packet_loss_percent: Optional[float] = None
    loaded_latency_ms: Optional[float] = None
    pending_loaded_latency: Optional[float] = None
    metadata: Optional[NetworkMetadata] = None
    download_series: List[ThroughputSample] = field(default_factory=list)
    upload_series: List[ThroughputSample] = field(default_factory=list)
    latency_series: List[LatencySample] = field(default_factory=list)
    phase_results: Dict[Phase, PhaseResult] = field(default_factory=dict)

    def freeze(self) -> MeasurementBundle:
        bundle = MeasurementBundle(
            download_mbps=self.download_mbps,
            upload_mbps=self.upload_mbps,
            latency_ms=self.latency_ms,
            jitter_ms=self.jitter_ms,
            packet_loss_percent=self.packet_loss_percent,
            loaded_latency_ms=self.loaded_latency_ms,
            metadata=self.metadata,
            download_series=tuple(self.download_series),
            upload_series=tuple(self.upload_series),
            latency_series=tuple(self.latency_series),
            phase_results=dict(self.phase_results),
        )
        return dataclasses.replace(bundle, quality=grading.score_bundle(bundle))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class MeasurementEngine:
    """
    Orchestrates one measurement run at a time.

    Collaborators can be injected for testing; by default the engine builds
    a latency probe from ``options.latency_transport``, a ``MetadataClient``
    and a ``ThroughputProbe`` against ``options.endpoint``.

    Callbacks (all optional):

    * ``on_phase_changed(phase)``
    * ``on_sample(sample)``
    * ``on_completed(bundle)``
    * ``on_error(exc)``
    * ``on_canceled()``
    """

    def __init__(
        self,
        options: Optional[RunOptions] = None,
        *,
        probe: Optional[LatencyProbe] = None,
        metadata_client: Optional[Any] = None,
        throughput: Optional[ThroughputProbe] = None,
    ) -> None:
        self.options = (options or RunOptions()).validate()
        self._probe = probe
        self._metadata_client = metadata_client
        self._throughput = throughput

        self.on_phase_changed: Optional[Callable[[Phase], None]] = None
        self.on_sample: Optional[Callable[[Sample], None]] = None
        self.on_completed: Optional[Callable[[MeasurementBundle], None]] = None
        self.on_error: Optional[Callable[[BaseException], None]] = None
        self.on_canceled: Optional[Callable[[], None]] = None

        self._token = CancelToken()
        self._state = EngineState.IDLE
        self._running = False
        self._run: Optional[_RunState] = None

    # -- Public API ---------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    def cancel(self) -> None:
        """Request cancellation.  Idempotent; a no-op once a run has ended."""
        if self._state.is_terminal and not self._running:
            return
        if not self._token.is_cancelled:
            LOGGER.info("Cancellation requested")
        self._token.cancel()

    async def run(self) -> RunOutcome:
        """Run every phase and return the terminal outcome."""
        if self._running:
            raise RuntimeError("A measurement run is already in progress")
        if self._state.is_terminal:
            self._token = CancelToken()
            self._state = EngineState.IDLE

        self._running = True
        self._run = _RunState()
        loop = asyncio.get_running_loop()
        deadline = loop.call_later(self.options.run_deadline, self._deadline_expired)

        try:
            outcome = await self._run_phases()
        except Exception as exc:
            LOGGER.error("Unexpected error during measurement", exc_info=True)
            outcome = self._finish(OutcomeKind.ERRORED, exc)
        finally:
            deadline.cancel()
            self._running = False

        self._deliver(outcome)
        return outcome

    # -- Orchestration ------------------------------------------------------

    def _deadline_expired(self) -> None:
        LOGGER.info("Run deadline of %.0f s reached", self.options.run_deadline)
        self._token.cancel()

    async def _run_phases(self) -> RunOutcome:
        opts = self.options
        if self._token.is_cancelled:
            return self._finish(OutcomeKind.CANCELED)

        async with AsyncExitStack() as stack:
            probe = await stack.enter_async_context(
                self._probe or make_probe(opts.latency_transport)
            )
            tester = LatencyTester(probe, opts.endpoint)
            metadata = await stack.enter_async_context(
                self._metadata_client
                or MetadataClient(opts.endpoint, timeout=opts.metadata_timeout, retries=opts.retries)
            )
            throughput = self._throughput or ThroughputProbe(
                opts.endpoint,
                latency=tester,
                loaded_latency_count=opts.loaded_latency_count,
                loaded_latency_delay=opts.loaded_latency_delay,
                probe_timeout=opts.probe_timeout,
            )

            phases: List[tuple] = [
                (Phase.METADATA, lambda: self._metadata_phase(metadata)),
                (Phase.LATENCY, lambda: self._latency_phase(tester)),
                (Phase.DOWNLOAD, lambda: self._transfer_phase(throughput, Direction.DOWNLOAD)),
                (Phase.UPLOAD, lambda: self._transfer_phase(throughput, Direction.UPLOAD)),
            ]

            for phase, fn in phases:
                if self._token.is_cancelled:
                    return self._finish(OutcomeKind.CANCELED)

                result, exc = await self._run_phase(phase, fn)
                if result.status is PhaseStatus.CANCELED:
                    return self._finish(OutcomeKind.CANCELED)

                terminal = self._terminal_error(phase, result, exc)
                if terminal is not None:
                    return self._finish(OutcomeKind.ERRORED, terminal)

        return self._finish(OutcomeKind.COMPLETED)

    async def _run_phase(
        self, phase: Phase, fn: Callable[[], Awaitable[Any]]
    ) -> tuple:
        self._state = EngineState(phase.value)
        self._run.active = phase
        LOGGER.info("Phase %s started", phase.value)
        if self.on_phase_changed is not None:
            self.on_phase_changed(phase)

        timeout = (
            self.options.metadata_timeout if phase is Phase.METADATA
            else self.options.phase_timeout
        )
        exc: Optional[BaseException] = None
        try:
            payload = await asyncio.wait_for(fn(), timeout=timeout)
        except MeasurementCancelled:
            result = PhaseResult.canceled()
        except (asyncio.TimeoutError, TransferTimeout) as err:
            exc = err
            result = PhaseResult.canceled() if self._token.is_cancelled else PhaseResult.timed_out()
        except MeasurementError as err:
            exc = err
            result = (
                PhaseResult.canceled() if self._token.is_cancelled
                else PhaseResult.failed(describe(err))
            )
        else:
            result = PhaseResult.success(payload)
            self._apply(phase, payload)
        finally:
            self._run.active = None

        self._run.phase_results[phase] = result
        if result.status is PhaseStatus.CANCELED:
            LOGGER.info("Phase %s canceled", phase.value)
        elif not result.is_success:
            LOGGER.warning("Phase %s %s: %s", phase.value, result.status.value, result.reason)
        return result, exc

    def _terminal_error(
        self, phase: Phase, result: PhaseResult, exc: Optional[BaseException]
    ) -> Optional[MeasurementError]:
        if result.is_success:
            return None
        if (
            phase in (Phase.METADATA, Phase.LATENCY)
            and result.status is PhaseStatus.FAILED
            and isinstance(exc, MeasurementError)
            and exc.connectivity
        ):
            return NoConnectivity(cause=exc)
        if self.options.error_policy is ErrorPolicy.STRICT:
            return PhaseFailed(phase.value, result.reason or result.status.value)
        return None

    # -- Phases -------------------------------------------------------------

    async def _metadata_phase(self, client: Any) -> NetworkMetadata:
        return await run_cancellable(client.fetch(), self._token)

    async def _latency_phase(self, tester: LatencyTester) -> LatencySeriesResult:
        opts = self.options
        return await tester.measure_series(
            opts.ping_count,
            timeout=opts.probe_timeout,
            inter_probe_delay=opts.inter_probe_delay,
            on_sample=lambda s: self._record(Phase.LATENCY, self._run.latency_series, s),
            token=self._token,
        )

    async def _transfer_phase(self, throughput: ThroughputProbe, direction: Direction) -> float:
        opts = self.options
        if direction is Direction.DOWNLOAD:
            phase, series, total = Phase.DOWNLOAD, self._run.download_series, opts.download_bytes
        else:
            phase, series, total = Phase.UPLOAD, self._run.upload_series, opts.upload_bytes

        def _loaded(value: Optional[float]) -> None:
            self._run.pending_loaded_latency = value

        return await throughput.measure(
            direction,
            total,
            opts.sample_interval,
            opts.transfer_timeout,
            on_sample=lambda s: self._record(phase, series, s),
            token=self._token,
            on_loaded_latency=_loaded if direction is Direction.DOWNLOAD else None,
        )

    # -- Result bookkeeping -------------------------------------------------

    def _record(self, phase: Phase, series: List[Sample], sample: Sample) -> None:
        if self._run.active is not phase or self._token.is_cancelled:
            return
        series.append(sample)
        if self.on_sample is not None:
            self.on_sample(sample)

    def _apply(self, phase: Phase, payload: Any) -> None:
        run = self._run
        if phase is Phase.METADATA:
            run.metadata = payload
        elif phase is Phase.LATENCY:
            run.latency_ms = payload.latency_ms
            run.jitter_ms = payload.jitter_ms
            run.packet_loss_percent = payload.packet_loss_percent
        elif phase is Phase.DOWNLOAD:
            run.download_mbps = payload
            run.loaded_latency_ms = run.pending_loaded_latency
        elif phase is Phase.UPLOAD:
            run.upload_mbps = payload

    def _finish(self, kind: OutcomeKind, error: Optional[BaseException] = None) -> RunOutcome:
        bundle = self._run.freeze() if self._run is not None else MeasurementBundle()
        self._state = {
            OutcomeKind.COMPLETED: EngineState.COMPLETED,
            OutcomeKind.CANCELED: EngineState.CANCELED,
            OutcomeKind.ERRORED: EngineState.ERRORED,
        }[kind]
        return RunOutcome(kind=kind, bundle=bundle, error=error)

    def _deliver(self, outcome: RunOutcome) -> None:
        if outcome.is_completed:
            LOGGER.info("Measurement completed")
            if self.on_completed is not None:
                self.on_completed(outcome.bundle)
        elif outcome.is_canceled:
            LOGGER.info("Measurement canceled")
            if self.on_canceled is not None:
                self.on_canceled()
        else:
            LOGGER.warning("Measurement failed: %s", describe(outcome.error))
            if self.on_error is not None:
                self.on_error(outcome.error)
