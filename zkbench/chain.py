"""
One iteration of the register → proof → verify chain.

Used by the staged engine's virtual workers.  An iteration walks through
these states::

    IDLE → REGISTERING → AWAIT_REGISTER → PROOF_GENERATING → AWAIT_PROOF
         → VERIFYING → AWAIT_VERIFY → PACED

A non-success answer at ``AWAIT_REGISTER`` or ``AWAIT_PROOF`` abandons
the rest of the chain and jumps straight to ``PACED``; the following
iteration starts again from ``IDLE``.  Every step's latency is recorded
into its trend whether or not the step succeeded.

The client only needs Locust's ``post(path, json=..., name=...,
catch_response=True)`` context-manager contract, so iterations can be
driven by a Locust ``HttpSession`` or by a fake in tests.

Key Concepts Demonstrated:
- An explicit state enum that makes early-exit paths testable
- ``catch_response=True`` to mark semantic failures on 200 responses
- Metrics recorded before branching, so failures still feed latency trends
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from zkbench.metrics import MetricSink
from zkbench.models import Routes
from zkbench.payloads import build_user, safe_json


class ChainState(Enum):
    IDLE = "idle"
    REGISTERING = "registering"
    AWAIT_REGISTER = "await_register"
    PROOF_GENERATING = "proof_generating"
    AWAIT_PROOF = "await_proof"
    VERIFYING = "verifying"
    AWAIT_VERIFY = "await_verify"
    PACED = "paced"


@dataclass(frozen=True)
class IterationOutcome:
    """
    Result of one chain iteration.

    Attributes:
        completed: True when all three steps succeeded.
        failed_step: ``"register"``, ``"proof"`` or ``"verify"`` for the
            first step that failed, else ``None``.
        states: Every state visited, in order.
    """

    completed: bool
    failed_step: str | None
    states: tuple[ChainState, ...]

    @property
    def abandoned(self) -> bool:
        """True when the chain was cut short before the verify step."""
        return self.failed_step in ("register", "proof")


class IterationTally:
    """Thread-safe counts of iteration outcomes across all workers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.completed = 0
        self.abandoned = 0
        self.failed_verify = 0

    def record(self, outcome: IterationOutcome) -> None:
        with self._lock:
            if outcome.completed:
                self.completed += 1
            elif outcome.abandoned:
                self.abandoned += 1
            else:
                self.failed_verify += 1


class ChainIteration:
    """
    Execute chain iterations against one client.

    Args:
        client: Locust ``HttpSession`` (or compatible fake).
        routes: Route layout of the service under test.
        sink: Where trends, checks and request counts are recorded.
        pace_seconds: Pause at the end of every iteration.
        sleep: Sleep function used for pacing.
        clock: Monotonic clock used to time each step.
        user_factory: Builds the registration payload.
    """

    def __init__(
        self,
        client: Any,
        routes: Routes,
        sink: MetricSink,
        *,
        pace_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        user_factory: Callable[[], dict[str, Any]] = build_user,
    ):
        self.client = client
        self.routes = routes
        self.sink = sink
        self.pace_seconds = pace_seconds
        self._sleep = sleep
        self._clock = clock
        self._user_factory = user_factory

    def run(self) -> IterationOutcome:
        """Run one iteration, including the trailing pace."""
        states = [ChainState.IDLE, ChainState.REGISTERING]
        registration = self._step(
            "register", self.routes.register, self._user_factory(), ("secret", "commitment")
        )
        states.append(ChainState.AWAIT_REGISTER)
        if registration is None:
            return self._finish(states, failed_step="register")

        commitment = registration["commitment"]
        states.append(ChainState.PROOF_GENERATING)
        proof_body = self._step(
            "proof",
            self.routes.proof,
            {"secret_hex": registration["secret"], "commitment": commitment},
            ("proof",),
        )
        states.append(ChainState.AWAIT_PROOF)
        if proof_body is None:
            return self._finish(states, failed_step="proof")

        states.append(ChainState.VERIFYING)
        verification = self._step(
            "verify",
            self.routes.verify,
            {"commitment": commitment, "proof": proof_body["proof"]},
            ("valid",),
        )
        states.append(ChainState.AWAIT_VERIFY)
        return self._finish(states, failed_step=None if verification is not None else "verify")

    def _finish(self, states: list[ChainState], *, failed_step: str | None) -> IterationOutcome:
        states.append(ChainState.PACED)
        if self.pace_seconds > 0:
            self._sleep(self.pace_seconds)
        return IterationOutcome(
            completed=failed_step is None,
            failed_step=failed_step,
            states=tuple(states),
        )

    def _step(
        self,
        step: str,
        path: str,
        body: dict[str, Any],
        required: tuple[str, ...],
    ) -> dict[str, Any] | None:
        """
        POST one chain step and validate it.

        Returns:
            The response body on success, ``None`` on failure.
        """
        started = self._clock()
        with self.client.post(path, json=body, name=step, catch_response=True) as response:
            self.sink.add_trend(step, (self._clock() - started) * 1000.0)
            status = response.status_code
            self.sink.add_check(f"{step} 200", status == 200)

            error = None
            data: dict[str, Any] = {}
            if not 200 <= status < 300:
                error = f"Expected 2xx, got {status}"
            else:
                data = safe_json(response)
                missing = [name for name in required if data.get(name) in (None, "")]
                if missing:
                    error = f"Response missing {', '.join(missing)}"
                elif step == "verify" and data.get("valid") is not True:
                    error = "Verification returned valid=false"

            self.sink.add_request(failed=error is not None)
            if error is not None:
                response.failure(error)
                return None
            response.success()
            return data
