"""
Integration tests for the preflight against a live stub service.

Key SDET Concepts Demonstrated:
- Real HTTP round trips to an in-process Flask stub on an ephemeral port
- Failure injection through stub configuration flags
- Asserting on server-side call counts to prove short-circuiting
"""

from __future__ import annotations

import socket

import pytest

from tests.mocks.stub_auth_service import create_stub_app, serve, stub_calls
from zkbench.endpoints import resolve_routes
from zkbench.preflight import PreflightError, PreflightOrchestrator, ServiceNotReadyError

pytestmark = pytest.mark.integration


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_preflight_produces_reusable_fixture(live_stub, stub_app):
    """Test that the chain yields a fixture that verifies again on replay."""
    # Arrange
    with PreflightOrchestrator(live_stub, timeout=5) as orchestrator:
        # Act
        status = orchestrator.wait_until_ready()
        fixture = orchestrator.run()

        # Assert
        assert status == 404
        assert fixture.secret.startswith("0x")
        assert fixture.commitment.isdigit()
        assert fixture.proof["protocol"] == "groth16"
        assert orchestrator.reverify(fixture) is True
        assert orchestrator.reverify(fixture) is True

    assert stub_calls(stub_app) == {"register": 1, "proof": 1, "verify": 3}


def test_preflight_with_optimised_routes():
    app = create_stub_app()

    with serve(app) as base_url:
        with PreflightOrchestrator(base_url, resolve_routes("optimised"), timeout=5) as orchestrator:
            fixture = orchestrator.run()

    assert fixture.proof
    assert stub_calls(app)["verify"] == 1


def test_invalid_verification_aborts_before_any_load():
    """Test that valid=false on the initial verify is fatal and names the verify step."""
    # Arrange
    app = create_stub_app({"STUB_VERIFY_RESULT": False})

    # Act
    with serve(app) as base_url:
        with PreflightOrchestrator(base_url, timeout=5) as orchestrator:
            with pytest.raises(PreflightError) as excinfo:
                orchestrator.run()

    # Assert
    assert excinfo.value.step == "verify"
    assert stub_calls(app) == {"register": 1, "proof": 1, "verify": 1}


def test_register_error_stops_the_chain():
    app = create_stub_app({"STUB_REGISTER_STATUS": 500})

    with serve(app) as base_url:
        with PreflightOrchestrator(base_url, timeout=5) as orchestrator:
            with pytest.raises(PreflightError, match="HTTP 500") as excinfo:
                orchestrator.run()

    assert excinfo.value.step == "register"
    assert stub_calls(app)["proof"] == 0


def test_proof_error_stops_the_chain():
    app = create_stub_app({"STUB_PROOF_STATUS": 503})

    with serve(app) as base_url:
        with PreflightOrchestrator(base_url, timeout=5) as orchestrator:
            with pytest.raises(PreflightError) as excinfo:
                orchestrator.run()

    assert excinfo.value.step == "proof"
    assert stub_calls(app)["verify"] == 0


def test_unreachable_service_is_not_ready():
    """Test that a closed port exhausts the readiness budget."""
    sleeps: list[float] = []
    orchestrator = PreflightOrchestrator(
        f"http://127.0.0.1:{_unused_port()}",
        timeout=1,
        ready_attempts=3,
        ready_delay=0.01,
        sleep=sleeps.append,
    )

    with pytest.raises(ServiceNotReadyError):
        orchestrator.wait_until_ready()

    assert sleeps == [0.01, 0.01]
    orchestrator.close()
