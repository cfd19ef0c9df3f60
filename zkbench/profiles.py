"""
Declarative load profiles for the staged engine.

A :class:`LoadProfile` is an ordered tuple of immutable :class:`Stage`
records plus a worker-pool size and pass/fail :class:`Thresholds`.
Profiles are read from YAML once at start-up and never mutated; they
differ only in numbers, never in chain logic.

Key Concepts Demonstrated:
- ``yaml.safe_load`` with strict, descriptive validation
- Frozen dataclasses for configuration that is shared across workers
- Threshold evaluation where "no data" is a failure, not a pass
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from zkbench.metrics import MetricSink, percentile

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(value: Any) -> float:
    """
    Convert ``"90s"``, ``"2m"``, ``"1h"``, ``"500ms"`` or a number to seconds.

    Raises:
        ValueError: If *value* is not a recognised non-negative duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return float(value)

    match = _DURATION_RE.match(str(value))
    if match is None:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _UNIT_SECONDS[unit]


@dataclass(frozen=True)
class Stage:
    """Ramp the arrival rate to *target* over *duration* seconds."""

    target: float
    duration: float


@dataclass(frozen=True)
class Thresholds:
    """Pass/fail bounds; both are strict upper limits."""

    max_failure_rate: float = 0.01
    max_p95_ms: float = 350.0


@dataclass(frozen=True)
class ThresholdResult:
    name: str
    actual: float | None
    limit: float
    passed: bool


@dataclass(frozen=True)
class LoadProfile:
    """
    A named ramping-arrival-rate profile.

    Attributes:
        name: Profile key in the YAML file.
        start_rate: Arrival rate (per ``time_unit``) at the start of the
            first stage.
        stages: Ordered ramp stages.
        pre_allocated_workers: Size of the worker pool; never exceeded.
        time_unit: Seconds that the rates refer to.
        graceful_stop: Seconds in-flight iterations may keep running after
            the last stage ends.
        thresholds: Pass/fail bounds of the run.
        description: Free-form text shown in the report.
    """

    name: str
    start_rate: float
    stages: tuple[Stage, ...]
    pre_allocated_workers: int
    time_unit: float = 1.0
    graceful_stop: float = 30.0
    thresholds: Thresholds = field(default_factory=Thresholds)
    description: str = ""

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    @property
    def peak_rate(self) -> float:
        """Highest arrival rate of the profile, in iterations per second."""
        peak = max([self.start_rate, *(stage.target for stage in self.stages)])
        return peak / self.time_unit


def _require_number(data: Mapping[str, Any], key: str, context: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{context}: '{key}' must be a number, got {value!r}")
    if value < 0:
        raise ValueError(f"{context}: '{key}' must not be negative, got {value!r}")
    return float(value)


def _parse_thresholds(data: Any, context: str) -> Thresholds:
    if not isinstance(data, Mapping):
        raise ValueError(f"{context}: 'thresholds' must be a mapping")
    return Thresholds(
        max_failure_rate=_require_number(data, "max_failure_rate", context),
        max_p95_ms=_require_number(data, "max_p95_ms", context),
    )


def _parse_profile(name: str, data: Mapping[str, Any], defaults: Mapping[str, Any]) -> LoadProfile:
    context = f"Profile {name!r}"
    merged = {**defaults, **data}

    raw_stages = merged.get("stages")
    if not isinstance(raw_stages, list) or not raw_stages:
        raise ValueError(f"{context}: 'stages' must be a non-empty list")

    stages = []
    for index, raw in enumerate(raw_stages, start=1):
        if not isinstance(raw, Mapping):
            raise ValueError(f"{context}: stage {index} must be a mapping")
        duration = parse_duration(raw.get("duration"))
        if duration <= 0:
            raise ValueError(f"{context}: stage {index} duration must be positive")
        target = _require_number(raw, "target", f"{context} stage {index}")
        stages.append(Stage(target=target, duration=duration))

    workers = merged.get("pre_allocated_workers")
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise ValueError(f"{context}: 'pre_allocated_workers' must be a positive integer")

    time_unit = parse_duration(merged.get("time_unit", 1))
    if time_unit <= 0:
        raise ValueError(f"{context}: 'time_unit' must be positive")

    thresholds = Thresholds()
    if "thresholds" in merged:
        thresholds = _parse_thresholds(merged["thresholds"], context)

    return LoadProfile(
        name=name,
        start_rate=_require_number(merged, "start_rate", context),
        stages=tuple(stages),
        pre_allocated_workers=workers,
        time_unit=time_unit,
        graceful_stop=parse_duration(merged.get("graceful_stop", 30)),
        thresholds=thresholds,
        description=str(merged.get("description", "")),
    )


def load_profiles(path: str | Path) -> dict[str, LoadProfile]:
    """
    Read every profile from a YAML file.

    The file holds an optional ``defaults`` mapping merged under every
    profile, and a ``profiles`` mapping of name → profile.

    Raises:
        ValueError: If the file is malformed or a profile is invalid.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Could not parse profiles file {path}: {exc}") from exc

    if not isinstance(data, Mapping):
        raise ValueError(f"Profiles file {path} must contain a mapping")

    defaults = data.get("defaults") or {}
    profiles = data.get("profiles")
    if not isinstance(defaults, Mapping):
        raise ValueError(f"Profiles file {path}: 'defaults' must be a mapping")
    if not isinstance(profiles, Mapping) or not profiles:
        raise ValueError(f"Profiles file {path} must define at least one profile under 'profiles'")

    result = {}
    for name, body in profiles.items():
        if not isinstance(body, Mapping):
            raise ValueError(f"Profile {name!r} must be a mapping")
        result[str(name)] = _parse_profile(str(name), body, defaults)
    return result


def get_profile(name: str, path: str | Path) -> LoadProfile:
    """Return the profile called *name* from *path*, or raise ``ValueError``."""
    profiles = load_profiles(path)
    try:
        return profiles[name]
    except KeyError:
        known = ", ".join(sorted(profiles))
        raise ValueError(f"Unknown profile {name!r} (expected one of: {known})") from None


def compare_thresholds(
    thresholds: Thresholds, failure_rate: float | None, p95_ms: float | None
) -> list[ThresholdResult]:
    """
    Judge a measured failure rate (a fraction) and p95 latency against *thresholds*.

    Both limits are strict.  A measurement of ``None`` fails.
    """
    return [
        ThresholdResult(
            name="failure_rate",
            actual=failure_rate,
            limit=thresholds.max_failure_rate,
            passed=failure_rate is not None and failure_rate < thresholds.max_failure_rate,
        ),
        ThresholdResult(
            name="p95_ms",
            actual=p95_ms,
            limit=thresholds.max_p95_ms,
            passed=p95_ms is not None and p95_ms < thresholds.max_p95_ms,
        ),
    ]


def evaluate_thresholds(thresholds: Thresholds, sink: MetricSink) -> list[ThresholdResult]:
    """
    Compare the run recorded in *sink* against *thresholds*.

    The failure rate is failed requests over all requests; p95 is taken
    over every step latency of every trend.
    """
    return compare_thresholds(
        thresholds, sink.failure_rate(), percentile(sink.all_latencies(), 95)
    )
