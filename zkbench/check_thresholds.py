"""
Gate a Locust stats CSV on a load profile's thresholds.

After a ``locust -f zkbench/locustfile.py --csv <prefix>`` run, CI can
point this at ``<prefix>_stats.csv`` to apply the same bounds the staged
engine applies in-process.  Only the ``Aggregated`` row is read; its
failure rate and p95 go through
:func:`zkbench.profiles.compare_thresholds`, so both gates judge runs
identically.

Exit codes:

- ``0``: all thresholds passed
- ``1``: at least one threshold was breached
- ``2``: the script itself failed (missing file, bad YAML, unreadable CSV)

Key Concepts Demonstrated:
- CSV-based performance gating without external tooling
- Tolerant lookup of the p95 column across Locust versions
- One comparison routine shared by every gate
"""

from __future__ import annotations

import argparse
import csv
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from zkbench.config import Config, get_config
from zkbench.profiles import Thresholds, compare_thresholds, get_profile
from zkbench.report import render_threshold_check

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2

# Labels Locust has used for the 95th-percentile column.
P95_COLUMNS = ("95%", "95%ile", "95th percentile", "p95")


@dataclass(frozen=True)
class AggregatedStats:
    """Totals of the ``Aggregated`` row of a Locust stats CSV."""

    requests: int
    failures: int
    p95_ms: float

    @property
    def failure_rate(self) -> float:
        return self.failures / self.requests


def add_arguments(
    parser: argparse.ArgumentParser, settings: type[Config] | None = None
) -> argparse.ArgumentParser:
    """Register the gate's options on *parser*, defaulting from *settings*."""
    settings = settings or get_config()
    parser.add_argument("--stats", required=True, type=Path, help="Locust *_stats.csv file")
    parser.add_argument(
        "--profile",
        default=settings.PROFILE,
        help="Load profile whose thresholds apply",
    )
    parser.add_argument(
        "--profiles-file",
        type=Path,
        default=settings.PROFILES_FILE,
        help="YAML file defining the profiles",
    )
    return parser


def _column(row: Mapping[str, str | None], name: str) -> float:
    raw = row.get(name)
    text = (raw or "").strip().rstrip("%")
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"Column {name!r} is missing or not numeric: {raw!r}") from None


def read_aggregated_stats(stats_path: Path) -> AggregatedStats:
    """
    Read the ``Aggregated`` row of *stats_path*.

    Raises:
        ValueError: If the row or a required column is missing, or the run
            recorded no requests.
    """
    with open(stats_path, encoding="utf-8", newline="") as handle:
        row = next(
            (
                candidate
                for candidate in csv.DictReader(handle)
                if "Aggregated" in (candidate.get("Name"), candidate.get("Type"))
            ),
            None,
        )
    if row is None:
        raise ValueError(f"{stats_path} has no 'Aggregated' row")

    requests = int(_column(row, "Request Count"))
    if requests <= 0:
        raise ValueError(f"{stats_path}: Request Count must be positive to apply thresholds")

    label = next((name for name in P95_COLUMNS if row.get(name)), None)
    if label is None:
        raise ValueError(f"{stats_path} has no p95 column (tried {', '.join(P95_COLUMNS)})")

    return AggregatedStats(
        requests=requests,
        failures=int(_column(row, "Failure Count")),
        p95_ms=_column(row, label),
    )


def check(stats_path: Path, thresholds: Thresholds, *, profile: str = "") -> int:
    """
    Print the verdict for *stats_path* and return the matching exit code.

    Raises:
        ValueError: If the CSV cannot be interpreted.
    """
    stats = read_aggregated_stats(stats_path)
    results = compare_thresholds(thresholds, stats.failure_rate, stats.p95_ms)
    print(
        render_threshold_check(
            results, profile=profile, requests=stats.requests, failures=stats.failures
        )
    )
    return EXIT_PASS if all(result.passed for result in results) else EXIT_THRESHOLD_BREACH


def run(args: argparse.Namespace) -> int:
    """Apply the named profile to the CSV in *args*; any error maps to exit code 2."""
    try:
        profile = get_profile(args.profile, args.profiles_file)
        return check(args.stats, profile.thresholds, profile=profile.name)
    except Exception as exc:  # pragma: no cover - defensive CLI guard
        print(f"Threshold check failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Check a Locust stats CSV against a load profile's thresholds."
    )
    return run(add_arguments(parser).parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
