"""
Append-only metric sinks for the staged engine.

Many virtual workers write into one :class:`MetricSink` at the same time;
the report and the threshold gate read it only once every worker has
finished.  Writes are therefore guarded by a single lock and reads return
copies.

Three kinds of metric are kept:

- **trends**: named latency series in milliseconds (``register``,
  ``proof``, ``verify``), fed regardless of the request outcome;
- **checks**: named pass/fail tallies such as ``"register 200"``;
- **requests**: total and failed request counts feeding the failure-rate
  threshold.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class TrendStats:
    """Summary of one latency trend."""

    count: int
    avg: float | None
    p50: float | None
    p95: float | None
    max: float | None


@dataclass(frozen=True)
class CheckTally:
    passes: int
    fails: int

    @property
    def total(self) -> int:
        return self.passes + self.fails


def percentile(values: Iterable[float], pct: float) -> float | None:
    """
    Return the *pct*-th percentile of *values*, or ``None`` when empty.

    Uses linear interpolation between the closest ranks, so ``pct=50`` of
    an even-length series is the mean of the two middle values.

    Raises:
        ValueError: If *pct* is outside ``[0, 100]``.
    """
    if not 0 <= pct <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {pct}")

    ordered = sorted(values)
    if not ordered:
        return None
    if len(ordered) == 1:
        return float(ordered[0])

    rank = (len(ordered) - 1) * pct / 100
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(ordered[lower])
    weight = rank - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


def summarize_trend(values: Sequence[float]) -> TrendStats:
    if not values:
        return TrendStats(count=0, avg=None, p50=None, p95=None, max=None)
    return TrendStats(
        count=len(values),
        avg=sum(values) / len(values),
        p50=percentile(values, 50),
        p95=percentile(values, 95),
        max=float(max(values)),
    )


class MetricSink:
    """Thread-safe, append-only store of trends, checks and request counts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._trends: dict[str, list[float]] = {}
        self._checks: dict[str, list[int]] = {}
        self._requests = 0
        self._failed_requests = 0

    def add_trend(self, name: str, value_ms: float) -> None:
        with self._lock:
            self._trends.setdefault(name, []).append(float(value_ms))

    def add_check(self, name: str, passed: bool) -> None:
        with self._lock:
            tally = self._checks.setdefault(name, [0, 0])
            tally[0 if passed else 1] += 1

    def add_request(self, failed: bool) -> None:
        with self._lock:
            self._requests += 1
            if failed:
                self._failed_requests += 1

    @property
    def requests(self) -> int:
        with self._lock:
            return self._requests

    @property
    def failed_requests(self) -> int:
        with self._lock:
            return self._failed_requests

    def failure_rate(self) -> float | None:
        """Failed requests / all requests, or ``None`` before any request."""
        with self._lock:
            if not self._requests:
                return None
            return self._failed_requests / self._requests

    def trend(self, name: str) -> list[float]:
        with self._lock:
            return list(self._trends.get(name, ()))

    def all_latencies(self) -> list[float]:
        """Every recorded latency across all trends."""
        with self._lock:
            return [value for values in self._trends.values() for value in values]

    def checks(self) -> dict[str, CheckTally]:
        with self._lock:
            return {
                name: CheckTally(passes=tally[0], fails=tally[1])
                for name, tally in self._checks.items()
            }

    def trend_stats(self) -> dict[str, TrendStats]:
        with self._lock:
            snapshot = {name: list(values) for name, values in self._trends.items()}
        return {name: summarize_trend(values) for name, values in snapshot.items()}
