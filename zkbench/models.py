"""
Data records shared by the sweep, the aggregator and the reporters.

Every record here is a frozen dataclass: once a fixture, an endpoint
template, a sample or a summary row has been produced it is never mutated,
which is what allows many concurrent load workers to read the same
:class:`Fixture` and :class:`EndpointSpec` without any locking.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from zkbench.metrics import CheckTally, TrendStats
    from zkbench.profiles import LoadProfile, ThresholdResult


@dataclass(frozen=True)
class Routes:
    """The three request paths of one route layout of the service under test."""

    register: str = "/register"
    proof: str = "/proof"
    verify: str = "/verify"


@dataclass(frozen=True)
class Fixture:
    """
    Valid registration and proof data produced once by the preflight.

    Attributes:
        secret: Hex-encoded secret returned by ``/register``.
        commitment: Decimal commitment string returned by ``/register``.
        proof: Proof object returned by ``/proof``; shared read-only by all
            proof/verify load workers.
    """

    secret: str
    commitment: str
    proof: dict[str, Any]

    def proof_request(self) -> dict[str, Any]:
        """Body of a ``/proof`` request built from this fixture."""
        return {"secret_hex": self.secret, "commitment": self.commitment}

    def verify_request(self) -> dict[str, Any]:
        """Body of a ``/verify`` request built from this fixture."""
        return {"commitment": self.commitment, "proof": self.proof}


@dataclass(frozen=True)
class EndpointSpec:
    """
    A named request template for one logical endpoint.

    ``request_builder`` is called once per request; it may return a fresh
    payload every time (registration) or the same fixture-derived payload
    (proof and verify).
    """

    name: str
    http_method: str
    path: str
    request_builder: Callable[[], dict[str, Any]]

    def build_request(self) -> dict[str, Any]:
        return self.request_builder()


@dataclass(frozen=True)
class Sample:
    """One resource observation of the target process."""

    cpu_percent: float
    memory_bytes: int
    # Monotonic time at which the sampling tick fired.
    taken_at: float = 0.0


@dataclass(frozen=True)
class LoadMetrics:
    """
    Raw load statistics of one phase as reported by the load generator.

    Latencies are in milliseconds, throughput in response bytes per
    second.  ``completed`` is false when the phase was cut short by a stop
    request.
    """

    latency_avg: float
    latency_p50: float
    throughput_avg: float
    requests_per_sec: float
    requests: int = 0
    failures: int = 0
    elapsed: float = 0.0
    completed: bool = True


@dataclass(frozen=True)
class PhaseResult:
    """Load metrics of one phase paired with the samples taken in the same window."""

    endpoint: str
    concurrency: int
    metrics: LoadMetrics
    samples: tuple[Sample, ...] = field(default_factory=tuple)
    started_at: float = 0.0
    stopped_at: float = 0.0


@dataclass(frozen=True)
class SummaryRecord:
    """
    One row of the sweep report: a reduced :class:`PhaseResult`.

    ``cpu_avg`` and ``mem_avg`` are ``None`` when no sample was taken,
    never ``0``, so that a missing measurement is not mistaken for an idle
    server.
    """

    endpoint: str
    concurrency: int
    latency_avg: float
    latency_p50: float
    throughput_avg: float
    requests_per_sec: float
    cpu_avg: float | None
    mem_avg: float | None
    requests: int = 0
    failures: int = 0
    complete: bool = True


@dataclass(frozen=True)
class StagedResult:
    """
    Outcome of one staged-profile run.

    Iteration counts: ``scheduled`` arrivals were produced, ``started`` of
    them were taken by a worker, ``completed`` ran all three steps
    successfully, ``failed_verify`` ran all three steps but did not verify,
    ``abandoned`` stopped after a failed register or proof step, and
    ``dropped`` were still queued when the run ended.
    """

    profile: LoadProfile
    trends: dict[str, TrendStats]
    checks: dict[str, CheckTally]
    requests: int
    failed_requests: int
    thresholds: list[ThresholdResult]
    scheduled: int = 0
    started: int = 0
    completed: int = 0
    failed_verify: int = 0
    abandoned: int = 0
    dropped: int = 0
    peak_backlog: int = 0
    peak_active: int = 0
    elapsed: float = 0.0
    interrupted: bool = False

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.thresholds)
