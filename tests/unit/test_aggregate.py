"""
Unit tests for the phase → summary reduction.
"""

from __future__ import annotations

import pytest

from zkbench.aggregate import phase_metrics, summarize
from zkbench.models import Sample

pytestmark = pytest.mark.unit


def test_summarize_averages_samples(phase_factory):
    """Test that CPU and memory are arithmetic means over the phase's samples."""
    # Arrange
    samples = (
        Sample(cpu_percent=10.0, memory_bytes=100),
        Sample(cpu_percent=30.0, memory_bytes=300),
    )
    phase = phase_factory(endpoint="verifyProof", concurrency=10, samples=samples)

    # Act
    record = summarize(phase)

    # Assert
    assert record.endpoint == "verifyProof"
    assert record.concurrency == 10
    assert record.cpu_avg == pytest.approx(20.0)
    assert record.mem_avg == pytest.approx(200.0)


def test_summarize_without_samples_reports_absence_not_zero(phase_factory):
    """Test that an empty sample list yields None, never 0."""
    record = summarize(phase_factory(samples=()))

    assert record.cpu_avg is None
    assert record.mem_avg is None


def test_summarize_copies_load_metrics(phase_factory):
    phase = phase_factory(
        latency_avg=40.0,
        latency_p50=35.0,
        throughput_avg=1000.0,
        requests_per_sec=25.0,
        requests=125,
        failures=3,
        completed=False,
    )

    record = summarize(phase)

    assert (record.latency_avg, record.latency_p50) == (40.0, 35.0)
    assert (record.throughput_avg, record.requests_per_sec) == (1000.0, 25.0)
    assert (record.requests, record.failures) == (125, 3)
    assert record.complete is False


def test_summarize_is_deterministic(phase_factory):
    phase = phase_factory(samples=(Sample(cpu_percent=5.5, memory_bytes=42),))

    assert summarize(phase) == summarize(phase)


class _FakeStatsTotal:
    """Stands in for Locust's aggregated ``StatsEntry``."""

    def __init__(self, *, requests=200, failures=0, avg=12.0, median=10, p50=11.0, length=4096):
        self.num_requests = requests
        self.num_failures = failures
        self.avg_response_time = avg
        self.median_response_time = median
        self.total_content_length = length
        self._p50 = p50

    def get_response_time_percentile(self, fraction):
        assert fraction == 0.5
        return self._p50


def test_phase_metrics_uses_percentile_when_available():
    """Test that rates are per second of the phase and p50 comes from the percentile."""
    metrics = phase_metrics(_FakeStatsTotal(failures=3), 4.0, completed=True)

    assert metrics.latency_avg == 12.0
    assert metrics.latency_p50 == 11.0
    assert metrics.requests_per_sec == pytest.approx(50.0)
    assert metrics.throughput_avg == pytest.approx(1024.0)
    assert (metrics.requests, metrics.failures, metrics.completed) == (200, 3, True)


@pytest.mark.parametrize(
    ("p50", "median", "expected"),
    [
        (0, 10, 10.0),
        (None, 10, 10.0),
        (None, 0, 12.0),
    ],
)
def test_phase_metrics_p50_falls_back_to_median_then_mean(p50, median, expected):
    """Test that a missing p50 falls back to the median, and a missing median to the mean."""
    total = _FakeStatsTotal(p50=p50, median=median)

    assert phase_metrics(total, 1.0, completed=True).latency_p50 == expected


def test_phase_metrics_without_requests_is_all_zero():
    total = _FakeStatsTotal(requests=0, avg=0, median=0, p50=None, length=0)

    metrics = phase_metrics(total, 0.0, completed=False)

    assert metrics.latency_avg == 0.0
    assert metrics.latency_p50 == 0.0
    assert metrics.requests_per_sec == 0.0
    assert metrics.completed is False
