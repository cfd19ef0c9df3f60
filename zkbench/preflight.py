"""
Preflight: make sure the service is up and produce a verified fixture.

Before any load is generated the harness needs two things from the
service under test:

1. **Readiness**: the service must answer HTTP at all.  Any response, of
   any status code, counts as "up"; only transport-level failures
   (connection refused, DNS, timeouts) count as "not up yet".  This is
   deliberately looser than a 2xx health check because the service has
   no health endpoint and ``GET /`` is expected to 404.
2. **A fixture**: a register → proof → verify chain executed once, whose
   secret, commitment and proof are then replayed by the proof and verify
   load phases.  The chain must verify as valid, otherwise every later
   proof/verify measurement would be measuring an error path.

Both steps are fatal on failure: there is no retry inside the chain and
no partial report.

Key Concepts Demonstrated:
- Bounded readiness polling with a fixed backoff
- Dependency-ordered API chaining with strict response validation
- Descriptive, step-tagged exceptions for fatal setup failures
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import requests

from zkbench.models import Fixture, Routes
from zkbench.payloads import build_user, safe_json

logger = logging.getLogger(__name__)

# The readiness probe only needs to see the socket answer; keep it short
# even when the per-request timeout for proof generation is long.
READY_PROBE_TIMEOUT = 5.0


class ServiceNotReadyError(RuntimeError):
    """The service did not answer HTTP within the readiness retry budget."""


class PreflightError(RuntimeError):
    """
    One step of the preflight chain failed.

    Attributes:
        step: ``"register"``, ``"proof"`` or ``"verify"``.
    """

    def __init__(self, step: str, message: str):
        super().__init__(f"{step} step failed: {message}")
        self.step = step


class PreflightOrchestrator:
    """
    Run the readiness probe and the one-off register → proof → verify chain.

    Args:
        base_url: Root URL of the service under test.
        routes: Route layout of the service.
        session: Optional ``requests.Session``; a new one is created when
            omitted.
        timeout: Per-request timeout in seconds for the chain steps.
        ready_attempts: Number of readiness probes before giving up.
        ready_delay: Fixed delay in seconds between readiness probes.
        sleep: Sleep function used between probes (injectable for tests).
    """

    def __init__(
        self,
        base_url: str,
        routes: Routes | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float = 60.0,
        ready_attempts: int = 30,
        ready_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.routes = routes or Routes()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.ready_attempts = ready_attempts
        self.ready_delay = ready_delay
        self._sleep = sleep

    def wait_until_ready(self) -> int:
        """
        Poll ``GET /`` until the service answers with any HTTP status.

        Returns:
            The status code of the first response received.

        Raises:
            ServiceNotReadyError: If every attempt failed at the transport
                level.
        """
        url = f"{self.base_url}/"
        for attempt in range(1, self.ready_attempts + 1):
            try:
                response = self.session.get(url, timeout=min(self.timeout, READY_PROBE_TIMEOUT))
            except requests.RequestException as exc:
                logger.info(
                    "Service at %s not reachable (attempt %d/%d): %s",
                    self.base_url,
                    attempt,
                    self.ready_attempts,
                    exc,
                )
                if attempt == self.ready_attempts:
                    raise ServiceNotReadyError(
                        f"Server not reachable at {self.base_url} after "
                        f"{self.ready_attempts} attempts"
                    ) from exc
                self._sleep(self.ready_delay)
                continue

            logger.info("Service at %s is up (HTTP %d)", self.base_url, response.status_code)
            return response.status_code

        # Only reachable with ready_attempts < 1.
        raise ServiceNotReadyError(f"No readiness attempts configured for {self.base_url}")

    def run(self) -> Fixture:
        """
        Execute register → proof → verify once and return the fixture.

        Raises:
            PreflightError: On a transport error, a non-2xx status, a
                missing field, or a verification that is not valid.
        """
        registration = self._post_json("register", self.routes.register, build_user())
        secret = _require_string(registration, "secret", step="register")
        commitment = _require_string(registration, "commitment", step="register")

        proof_body = self._post_json(
            "proof",
            self.routes.proof,
            {"secret_hex": secret, "commitment": commitment},
        )
        proof = proof_body.get("proof")
        if not isinstance(proof, dict) or not proof:
            raise PreflightError("proof", "response missing 'proof' object")

        fixture = Fixture(secret=secret, commitment=commitment, proof=proof)
        if not self.reverify(fixture):
            raise PreflightError(
                "verify", "initial verification returned valid=false; proof or commitment invalid"
            )

        logger.info("Preflight succeeded; fixture commitment %s", _abbreviate(commitment))
        return fixture

    def reverify(self, fixture: Fixture) -> bool:
        """
        Re-run only the verify step for *fixture* and return its validity.

        The service answers an invalid proof with ``401`` and a
        ``{"valid": false}`` body, so that status is read as a verdict
        rather than as a transport failure.

        Raises:
            PreflightError: If the request fails or the response carries no
                boolean ``valid`` field.
        """
        response = self._send("verify", self.routes.verify, fixture.verify_request())
        body = safe_json(response)
        valid = body.get("valid")

        if _is_success(response.status_code) or (response.status_code == 401 and valid is False):
            if not isinstance(valid, bool):
                raise PreflightError("verify", "response missing boolean 'valid' field")
            return valid

        raise PreflightError("verify", f"expected 2xx, got HTTP {response.status_code}")

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> PreflightOrchestrator:
        return self

    def __exit__(self, *_exc_info: Any) -> None:
        self.close()

    def _send(self, step: str, path: str, body: dict[str, Any]) -> requests.Response:
        """POST *body* as JSON, converting transport errors into ``PreflightError``."""
        try:
            return self.session.post(f"{self.base_url}{path}", json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PreflightError(step, f"request to {path} failed: {exc}") from exc

    def _post_json(self, step: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST *body* and return the JSON object of a 2xx response."""
        response = self._send(step, path, body)
        if not _is_success(response.status_code):
            raise PreflightError(step, f"expected 2xx from {path}, got HTTP {response.status_code}")

        data = safe_json(response)
        if not data:
            raise PreflightError(step, f"response from {path} is not a JSON object")
        return data


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _require_string(data: dict[str, Any], field_name: str, *, step: str) -> str:
    value = data.get(field_name)
    if not isinstance(value, str) or not value:
        raise PreflightError(step, f"response missing '{field_name}'")
    return value


def _abbreviate(value: str, keep: int = 12) -> str:
    return value if len(value) <= keep else f"{value[:keep]}…"
