"""
Concurrency sweep: every endpoint at every concurrency level, one at a time.

The driver owns sequencing and resource attribution only.  Generating the
load itself is delegated to a *phase runner* (see :class:`PhaseRunner`),
and turning a phase into a report row is delegated to
:func:`zkbench.aggregate.summarize`.

Phases never overlap.  A fresh :class:`~zkbench.sampler.ResourceSampler`
is started immediately before each phase and stopped immediately after
it, so the CPU and memory figures of one row can never include work done
for another.

Key Concepts Demonstrated:
- Strict sequential isolation of measurement windows
- ``try``/``finally`` to guarantee background samplers are stopped
- Cooperative cancellation through a shared ``threading.Event``
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Protocol

from zkbench.aggregate import summarize
from zkbench.config import validate_levels
from zkbench.models import EndpointSpec, LoadMetrics, PhaseResult, Sample, SummaryRecord
from zkbench.sampler import ResourceSampler

logger = logging.getLogger(__name__)


class PhaseRunner(Protocol):
    """Anything that can generate one fixed-duration load phase."""

    def run(
        self,
        endpoint: EndpointSpec,
        concurrency: int,
        duration: float,
        stop_event: threading.Event,
    ) -> LoadMetrics:
        """Run *endpoint* at *concurrency* for *duration* seconds or until *stop_event* is set."""


class Sampler(Protocol):
    def start(self) -> None: ...

    def stop(self) -> tuple[Sample, ...]: ...


SamplerFactory = Callable[[int, float], Sampler]


class SweepDriver:
    """
    Run the full endpoint × concurrency matrix and collect summary rows.

    Args:
        endpoints: Endpoint templates, in the order they are benchmarked.
        concurrency_levels: Strictly ascending positive concurrency levels.
        phase_duration: Wall-clock seconds of every phase.
        phase_runner: Generator of the load itself.
        target_pid: Process to sample, or ``None`` to skip sampling.
        sample_interval: Seconds between resource samples.
        sampler_factory: Builds one sampler per phase from ``(pid, interval)``.
        clock: Monotonic clock used to stamp phase windows.
    """

    def __init__(
        self,
        endpoints: Sequence[EndpointSpec],
        concurrency_levels: Sequence[int],
        phase_duration: float,
        phase_runner: PhaseRunner,
        *,
        target_pid: int | None = None,
        sample_interval: float = 0.25,
        sampler_factory: SamplerFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        validate_levels(list(concurrency_levels))
        if phase_duration <= 0:
            raise ValueError(f"Phase duration must be positive, got {phase_duration}")

        self.endpoints = list(endpoints)
        self.concurrency_levels = list(concurrency_levels)
        self.phase_duration = phase_duration
        self.phase_runner = phase_runner
        self.target_pid = target_pid
        self.sample_interval = sample_interval
        self.sampler_factory = sampler_factory or ResourceSampler
        self._clock = clock
        self._stop_event = threading.Event()
        self.phases: list[PhaseResult] = []

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def expected_records(self) -> int:
        return len(self.endpoints) * len(self.concurrency_levels)

    def stop(self) -> None:
        """Cut the active phase short and prevent any further phase from starting."""
        if not self._stop_event.is_set():
            logger.info("Stop requested; ending the current phase")
        self._stop_event.set()

    def run(self) -> list[SummaryRecord]:
        """
        Execute every phase in order.

        Returns:
            One :class:`SummaryRecord` per executed phase.  After a complete
            run that is ``len(endpoints) * len(concurrency_levels)`` rows;
            after :meth:`stop` it is the rows finished so far plus the
            interrupted one, marked ``complete=False``.
        """
        if self.target_pid is None:
            logger.warning("No target process; CPU and memory will be reported as n/a")

        records: list[SummaryRecord] = []
        for endpoint in self.endpoints:
            for concurrency in self.concurrency_levels:
                if self._stop_event.is_set():
                    logger.info("Sweep stopped after %d of %d phases", len(records), self.expected_records)
                    return records
                records.append(summarize(self._run_phase(endpoint, concurrency)))
        return records

    def _run_phase(self, endpoint: EndpointSpec, concurrency: int) -> PhaseResult:
        logger.info(
            "Phase start: %s @ %d concurrent for %.1fs",
            endpoint.name,
            concurrency,
            self.phase_duration,
        )

        sampler = None
        if self.target_pid is not None:
            sampler = self.sampler_factory(self.target_pid, self.sample_interval)

        samples: tuple[Sample, ...] = ()
        started_at = self._clock()
        if sampler is not None:
            sampler.start()
        try:
            metrics = self.phase_runner.run(
                endpoint, concurrency, self.phase_duration, self._stop_event
            )
        finally:
            if sampler is not None:
                samples = sampler.stop()
            stopped_at = self._clock()

        if self._stop_event.is_set() and metrics.completed:
            metrics = replace(metrics, completed=False)

        phase = PhaseResult(
            endpoint=endpoint.name,
            concurrency=concurrency,
            metrics=metrics,
            samples=samples,
            started_at=started_at,
            stopped_at=stopped_at,
        )
        self.phases.append(phase)

        logger.info(
            "Phase stop: %s @ %d: %d requests, %d failures, %d samples%s",
            endpoint.name,
            concurrency,
            metrics.requests,
            metrics.failures,
            len(samples),
            "" if metrics.completed else " (incomplete)",
        )
        return phase
