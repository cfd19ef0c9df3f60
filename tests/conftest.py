"""
Shared pytest fixtures for the zkbench test suite.

Key SDET Concepts Demonstrated:
- Fixture factories for immutable domain records
- Deterministic fake clocks instead of real sleeps
- A real HTTP stub server scoped to a single test for isolation

Locust is never imported here or in any test: importing it monkey-patches
the standard library, which would change the behaviour of every other
test in the session.
"""

from __future__ import annotations

import os
from typing import Any

import pytest

os.environ["ZKBENCH_ENV"] = "testing"

from zkbench.config import get_config
from zkbench.models import Fixture, LoadMetrics, PhaseResult, Sample

from tests.mocks.stub_auth_service import create_stub_app, serve


# -----------------------------------------------------------------------------
# Configuration Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(scope="session")
def settings():
    """Configuration class for the ``testing`` environment."""
    return get_config("testing")


# -----------------------------------------------------------------------------
# Test Data Factory Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def fixture_factory():
    """
    Factory for :class:`Fixture` records.

    Example:
        def test_something(fixture_factory):
            fixture = fixture_factory(commitment="42")
    """

    def _create(
        secret: str = "0xAA",
        commitment: str = "123",
        proof: dict[str, Any] | None = None,
    ) -> Fixture:
        return Fixture(
            secret=secret,
            commitment=commitment,
            proof=proof if proof is not None else {"pi_a": ["1", "2"], "protocol": "groth16"},
        )

    return _create


@pytest.fixture
def metrics_factory():
    """Factory for :class:`LoadMetrics` with plausible defaults."""

    def _create(**overrides: Any) -> LoadMetrics:
        values = {
            "latency_avg": 12.5,
            "latency_p50": 11.0,
            "throughput_avg": 2048.0,
            "requests_per_sec": 80.0,
            "requests": 400,
            "failures": 0,
            "elapsed": 5.0,
            "completed": True,
        }
        values.update(overrides)
        return LoadMetrics(**values)

    return _create


@pytest.fixture
def phase_factory(metrics_factory):
    """Factory for :class:`PhaseResult` records."""

    def _create(
        endpoint: str = "register",
        concurrency: int = 1,
        samples: tuple[Sample, ...] = (),
        **metric_overrides: Any,
    ) -> PhaseResult:
        return PhaseResult(
            endpoint=endpoint,
            concurrency=concurrency,
            metrics=metrics_factory(**metric_overrides),
            samples=samples,
        )

    return _create


# -----------------------------------------------------------------------------
# Clock Fixtures
# -----------------------------------------------------------------------------

class FakeClock:
    """Manually advanced monotonic clock; ``sleep`` advances it instantly."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# -----------------------------------------------------------------------------
# Stub Service Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def stub_app():
    """A fresh stub ZK-Auth application; tweak ``stub_app.config`` per test."""
    return create_stub_app()


@pytest.fixture
def live_stub(stub_app):
    """
    Serve ``stub_app`` over real HTTP for the duration of one test.

    Yields:
        str: Base URL of the running stub.
    """
    with serve(stub_app) as base_url:
        yield base_url
