"""
Human-readable reports for both execution modes.

Rendering returns a string instead of printing, so the command line
decides where it goes and tests can assert on it.  Missing resource
figures are shown as ``n/a``; a phase cut short by a stop request is
flagged with ``*``.
"""

from __future__ import annotations

from collections.abc import Sequence

from zkbench.models import StagedResult, SummaryRecord
from zkbench.profiles import ThresholdResult

MB = 1024 * 1024
NA = "n/a"

_SWEEP_COLUMNS = (
    ("Endpoint", "<", 16),
    ("Conc", ">", 6),
    ("Lat avg (ms)", ">", 14),
    ("Lat p50 (ms)", ">", 14),
    ("Thru (MB/s)", ">", 13),
    ("Req/s", ">", 10),
    ("CPU avg (%)", ">", 13),
    ("Mem avg (MB)", ">", 14),
)
_SWEEP_WIDTH = sum(width for _, _, width in _SWEEP_COLUMNS)
_REPORT_WIDTH = 60

# Display label and scale of each threshold; failure rates are shown in %.
_THRESHOLD_LABELS = {
    "failure_rate": ("Failure rate (%)", 100.0),
    "p95_ms": ("P95 latency (ms)", 1.0),
}


def _fmt(value: float | None, digits: int = 2, scale: float = 1.0) -> str:
    if value is None:
        return NA
    return f"{value / scale:.{digits}f}"


def _row(cells: Sequence[str]) -> str:
    return "".join(
        f"{cell:{align}{width}}" for cell, (_, align, width) in zip(cells, _SWEEP_COLUMNS)
    )


def render_summary_table(records: Sequence[SummaryRecord]) -> str:
    """Render sweep rows as a fixed-width table."""
    lines = [
        "Concurrency Sweep Summary",
        "-" * _SWEEP_WIDTH,
        _row([title for title, _, _ in _SWEEP_COLUMNS]),
        "-" * _SWEEP_WIDTH,
    ]

    for record in records:
        name = record.endpoint if record.complete else f"{record.endpoint}*"
        lines.append(
            _row(
                [
                    name,
                    str(record.concurrency),
                    _fmt(record.latency_avg),
                    _fmt(record.latency_p50),
                    _fmt(record.throughput_avg, scale=MB),
                    _fmt(record.requests_per_sec),
                    _fmt(record.cpu_avg, digits=1),
                    _fmt(record.mem_avg, digits=1, scale=MB),
                ]
            )
        )

    lines.append("-" * _SWEEP_WIDTH)
    if any(not record.complete for record in records):
        lines.append("* phase interrupted before its full duration")
    if any(record.failures for record in records):
        failed = sum(record.failures for record in records)
        total = sum(record.requests for record in records)
        lines.append(f"Failed requests: {failed} of {total}")
    return "\n".join(lines)


def render_staged_report(result: StagedResult) -> str:
    """Render the trends, checks, iteration counts and thresholds of a staged run."""
    profile = result.profile
    width = _REPORT_WIDTH
    lines = [
        f"Staged Load Profile: {profile.name}"
        + (f" ({profile.description})" if profile.description else ""),
        "-" * width,
        f"{'Trend (ms)':<14}{'Count':>8}{'Avg':>10}{'p50':>10}{'p95':>10}{'Max':>8}",
        "-" * width,
    ]
    for name in ("register", "proof", "verify"):
        stats = result.trends.get(name)
        if stats is None:
            lines.append(f"{name:<14}{0:>8}{NA:>10}{NA:>10}{NA:>10}{NA:>8}")
            continue
        lines.append(
            f"{name:<14}{stats.count:>8}{_fmt(stats.avg, 1):>10}{_fmt(stats.p50, 1):>10}"
            f"{_fmt(stats.p95, 1):>10}{_fmt(stats.max, 0):>8}"
        )

    lines += ["-" * width, f"{'Check':<30}{'Pass':>10}{'Fail':>10}{'Rate':>10}", "-" * width]
    for name, tally in sorted(result.checks.items()):
        rate = f"{tally.passes / tally.total * 100:.1f}%" if tally.total else NA
        lines.append(f"{name:<30}{tally.passes:>10}{tally.fails:>10}{rate:>10}")

    lines += [
        "-" * width,
        f"Iterations: {result.scheduled} scheduled, {result.started} started, "
        f"{result.completed} completed, {result.failed_verify} failed verification, "
        f"{result.abandoned} abandoned, {result.dropped} dropped",
        f"Peak backlog: {result.peak_backlog}  Peak active workers: {result.peak_active}"
        f" of {profile.pre_allocated_workers}",
        f"Requests: {result.requests} ({result.failed_requests} failed) in {result.elapsed:.1f}s",
        "-" * width,
        *_threshold_lines(result.thresholds),
        "-" * width,
    ]
    overall = "PASS" if result.passed else "FAIL"
    if result.interrupted:
        overall += " (interrupted)"
    lines.append(f"Overall: {overall}")
    return "\n".join(lines)


def _threshold_lines(results: Sequence[ThresholdResult]) -> list[str]:
    lines = [
        f"{'Threshold':<22}{'Actual':>12}{'Limit':>14}{'Status':>12}",
        "-" * _REPORT_WIDTH,
    ]
    for threshold in results:
        label, scale = _THRESHOLD_LABELS.get(threshold.name, (threshold.name, 1.0))
        actual = None if threshold.actual is None else threshold.actual * scale
        status = "PASS" if threshold.passed else "FAIL"
        lines.append(
            f"{label:<22}{_fmt(actual):>12}{threshold.limit * scale:>14.2f}{status:>12}"
        )
    return lines


def render_threshold_check(
    results: Sequence[ThresholdResult], *, profile: str, requests: int, failures: int
) -> str:
    """Render the outcome of gating a Locust stats file on a profile's thresholds."""
    passed = all(threshold.passed for threshold in results)
    lines = [
        f"Performance Threshold Check (profile: {profile})",
        "-" * _REPORT_WIDTH,
        f"Requests: {requests} ({failures} failed)",
        "-" * _REPORT_WIDTH,
        *_threshold_lines(results),
        "-" * _REPORT_WIDTH,
        f"Overall: {'PASS' if passed else 'FAIL'}",
    ]
    return "\n".join(lines)
