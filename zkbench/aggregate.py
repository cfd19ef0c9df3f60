"""
Reduce one phase's raw output into a report row.

``phase_metrics`` condenses the load generator's request statistics into
:class:`LoadMetrics`; ``summarize`` pairs those with the phase's resource
samples.  Both are pure functions: nothing is logged, stored or mutated
along the way.
"""

from __future__ import annotations

from statistics import fmean
from typing import Any

from zkbench.models import LoadMetrics, PhaseResult, SummaryRecord


def phase_metrics(total: Any, elapsed: float, *, completed: bool) -> LoadMetrics:
    """
    Build :class:`LoadMetrics` from Locust's aggregated ``StatsEntry``.

    The p50 falls back to the median, then to the mean, when the
    percentile is unavailable.

    Args:
        total: ``environment.stats.total`` of the finished phase.
        elapsed: Wall-clock seconds the phase ran.
        completed: False when the phase was stopped early.
    """
    elapsed = max(elapsed, 1e-9)
    requests = total.num_requests

    latency_avg = float(total.avg_response_time) if requests else 0.0
    p50 = total.get_response_time_percentile(0.5) if requests else None
    if not p50:
        p50 = total.median_response_time or latency_avg

    return LoadMetrics(
        latency_avg=latency_avg,
        latency_p50=float(p50),
        throughput_avg=total.total_content_length / elapsed,
        requests_per_sec=requests / elapsed,
        requests=requests,
        failures=total.num_failures,
        elapsed=elapsed,
        completed=completed,
    )


def summarize(phase: PhaseResult) -> SummaryRecord:
    """
    Build the :class:`SummaryRecord` for *phase*.

    CPU and memory are the arithmetic means over the phase's samples.  An
    empty sample list yields ``None`` for both, never ``0``.
    """
    samples = phase.samples
    if samples:
        cpu_avg: float | None = fmean(sample.cpu_percent for sample in samples)
        mem_avg: float | None = fmean(sample.memory_bytes for sample in samples)
    else:
        cpu_avg = mem_avg = None

    metrics = phase.metrics
    return SummaryRecord(
        endpoint=phase.endpoint,
        concurrency=phase.concurrency,
        latency_avg=metrics.latency_avg,
        latency_p50=metrics.latency_p50,
        throughput_avg=metrics.throughput_avg,
        requests_per_sec=metrics.requests_per_sec,
        cpu_avg=cpu_avg,
        mem_avg=mem_avg,
        requests=metrics.requests,
        failures=metrics.failures,
        complete=metrics.completed,
    )
