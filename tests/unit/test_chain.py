"""
Unit tests for the register → proof → verify iteration state machine.

A scripted fake stands in for Locust's ``HttpSession``: it honours the
``catch_response=True`` context-manager protocol and records every
request and every success/failure verdict, without any network I/O.

Key SDET Concepts Demonstrated:
- Fake objects that satisfy a third-party interface contract
- State-path assertions for early-exit branches
- Metrics asserted on failure paths, not just the happy path
"""

from __future__ import annotations

import pytest

from zkbench.chain import ChainIteration, ChainState, IterationOutcome, IterationTally
from zkbench.metrics import MetricSink
from zkbench.models import Routes

pytestmark = pytest.mark.unit

S = ChainState
FULL_PATH = (
    S.IDLE, S.REGISTERING, S.AWAIT_REGISTER, S.PROOF_GENERATING, S.AWAIT_PROOF,
    S.VERIFYING, S.AWAIT_VERIFY, S.PACED,
)


class _FakeResponse:
    def __init__(self, status_code: int, body):
        self.status_code = status_code
        self._body = body
        self.verdict: str | None = None
        self.reason: str | None = None

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    def success(self):
        self.verdict = "success"

    def failure(self, reason):
        self.verdict = "failure"
        self.reason = reason

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class _FakeClient:
    """Answers each step name with a scripted (status, body) pair."""

    def __init__(self, clock, script=None, latency_ms=None):
        self.clock = clock
        self.script = {
            "register": (200, {"secret": "0xAA", "commitment": "123"}),
            "proof": (200, {"proof": {"pi_a": ["1"]}}),
            "verify": (200, {"valid": True}),
        }
        self.script.update(script or {})
        self.latency_ms = {"register": 20.0, "proof": 300.0, "verify": 40.0}
        self.latency_ms.update(latency_ms or {})
        self.requests: list[tuple[str, str, dict]] = []
        self.responses: list[_FakeResponse] = []

    def post(self, path, json=None, name=None, catch_response=False):
        assert catch_response is True
        self.requests.append((name, path, json))
        self.clock.advance(self.latency_ms[name] / 1000.0)
        response = _FakeResponse(*self.script[name])
        self.responses.append(response)
        return response


@pytest.fixture
def sink():
    return MetricSink()


def _iteration(client, sink, clock, routes=None, pace=0.1):
    return ChainIteration(
        client,
        routes or Routes(),
        sink,
        pace_seconds=pace,
        sleep=clock.sleep,
        clock=clock,
        user_factory=lambda: {"email": "a@example.com"},
    )


def test_successful_iteration_runs_all_three_steps(sink, fake_clock):
    """Test that a healthy chain visits every state and chains the response values."""
    # Arrange
    client = _FakeClient(fake_clock)

    # Act
    outcome = _iteration(client, sink, fake_clock).run()

    # Assert
    assert outcome == IterationOutcome(completed=True, failed_step=None, states=FULL_PATH)
    assert [(name, path) for name, path, _ in client.requests] == [
        ("register", "/register"), ("proof", "/proof"), ("verify", "/verify"),
    ]
    assert client.requests[1][2] == {"secret_hex": "0xAA", "commitment": "123"}
    assert client.requests[2][2] == {"commitment": "123", "proof": {"pi_a": ["1"]}}
    assert all(r.verdict == "success" for r in client.responses)
    assert sink.trend("proof") == pytest.approx([300.0])
    assert sink.failure_rate() == 0.0


def test_register_500_abandons_chain_and_still_records_latency(sink, fake_clock):
    """Test that HTTP 500 on register skips proof/verify, paces, and counts the failure."""
    # Arrange
    client = _FakeClient(fake_clock, script={"register": (500, {"error": "boom"})})

    # Act
    outcome = _iteration(client, sink, fake_clock, pace=0.1).run()

    # Assert
    assert outcome.failed_step == "register"
    assert outcome.abandoned
    assert outcome.states == (S.IDLE, S.REGISTERING, S.AWAIT_REGISTER, S.PACED)
    assert [name for name, _, _ in client.requests] == ["register"]
    assert sink.trend("register") == pytest.approx([20.0])
    assert sink.checks()["register 200"].fails == 1
    assert sink.failure_rate() == 1.0
    assert client.responses[0].verdict == "failure"
    assert fake_clock.sleeps == [0.1]


def test_proof_failure_skips_verify(sink, fake_clock):
    client = _FakeClient(fake_clock, script={"proof": (503, "unavailable")})

    outcome = _iteration(client, sink, fake_clock).run()

    assert outcome.failed_step == "proof"
    assert outcome.states[-2:] == (S.AWAIT_PROOF, S.PACED)
    assert [name for name, _, _ in client.requests] == ["register", "proof"]
    assert sink.trend("proof") == pytest.approx([300.0])
    assert sink.trend("verify") == []


def test_register_200_without_commitment_is_a_failure(sink, fake_clock):
    """Test that a 200 missing required fields fails the request but passes the status check."""
    client = _FakeClient(fake_clock, script={"register": (200, {"secret": "0xAA"})})

    outcome = _iteration(client, sink, fake_clock).run()

    assert outcome.failed_step == "register"
    assert sink.checks()["register 200"].passes == 1
    assert sink.failed_requests == 1
    assert "commitment" in client.responses[0].reason


def test_invalid_verification_counts_as_failed_iteration(sink, fake_clock):
    client = _FakeClient(fake_clock, script={"verify": (401, {"valid": False})})

    outcome = _iteration(client, sink, fake_clock).run()

    assert outcome.completed is False
    assert outcome.failed_step == "verify"
    assert not outcome.abandoned
    assert outcome.states == FULL_PATH
    assert sink.checks()["verify 200"].fails == 1


def test_verify_200_with_valid_false_is_a_failure(sink, fake_clock):
    client = _FakeClient(fake_clock, script={"verify": (200, {"valid": False})})

    outcome = _iteration(client, sink, fake_clock).run()

    assert outcome.failed_step == "verify"
    assert client.responses[-1].verdict == "failure"


def test_non_json_body_fails_step(sink, fake_clock):
    client = _FakeClient(fake_clock, script={"register": (200, ValueError("html"))})

    outcome = _iteration(client, sink, fake_clock).run()

    assert outcome.failed_step == "register"


def test_zero_pace_does_not_sleep(sink, fake_clock):
    _iteration(_FakeClient(fake_clock), sink, fake_clock, pace=0).run()

    assert fake_clock.sleeps == []


def test_optimised_routes_are_used(sink, fake_clock):
    from zkbench.endpoints import resolve_routes

    client = _FakeClient(fake_clock)

    _iteration(client, sink, fake_clock, routes=resolve_routes("optimised")).run()

    assert [path for _, path, _ in client.requests] == ["/register", "/generate-proof", "/verify-proof"]


def test_tally_classifies_outcomes():
    tally = IterationTally()

    tally.record(IterationOutcome(True, None, FULL_PATH))
    tally.record(IterationOutcome(False, "register", ()))
    tally.record(IterationOutcome(False, "proof", ()))
    tally.record(IterationOutcome(False, "verify", FULL_PATH))

    assert (tally.completed, tally.abandoned, tally.failed_verify) == (1, 2, 1)
