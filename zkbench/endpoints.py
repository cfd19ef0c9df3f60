"""
Endpoint templates for the concurrency sweep.

The sweep benchmarks each endpoint in isolation, so every endpoint needs a
request template that can stand on its own:

- ``register`` generates a fresh identity per request, exactly as a real
  sign-up would.
- ``generateProof`` and ``verifyProof`` depend on the output of earlier
  steps, so they reuse the payload built once from the preflight
  :class:`~zkbench.models.Fixture`.  The payload object is created once
  and handed out verbatim to every request.
"""

from __future__ import annotations

from zkbench.models import EndpointSpec, Fixture, Routes
from zkbench.payloads import build_user

# Route layouts shipped by the service under test.
ROUTE_PRESETS: dict[str, Routes] = {
    "standard": Routes(register="/register", proof="/proof", verify="/verify"),
    "optimised": Routes(register="/register", proof="/generate-proof", verify="/verify-proof"),
}


def resolve_routes(name: str) -> Routes:
    """
    Return the :class:`Routes` preset called *name*.

    Raises:
        ValueError: If no preset has that name.
    """
    try:
        return ROUTE_PRESETS[name]
    except KeyError:
        known = ", ".join(sorted(ROUTE_PRESETS))
        raise ValueError(f"Unknown route preset {name!r} (expected one of: {known})") from None


def build_endpoint_specs(fixture: Fixture, routes: Routes) -> list[EndpointSpec]:
    """
    Build the three endpoint templates benchmarked by the sweep.

    Args:
        fixture: Verified fixture from the preflight.
        routes: Route layout of the service under test.

    Returns:
        ``register``, ``generateProof`` and ``verifyProof`` templates, in
        the order the sweep runs them.
    """
    proof_body = fixture.proof_request()
    verify_body = fixture.verify_request()

    return [
        EndpointSpec(
            name="register",
            http_method="POST",
            path=routes.register,
            request_builder=build_user,
        ),
        EndpointSpec(
            name="generateProof",
            http_method="POST",
            path=routes.proof,
            request_builder=lambda: proof_body,
        ),
        EndpointSpec(
            name="verifyProof",
            http_method="POST",
            path=routes.verify,
            request_builder=lambda: verify_body,
        ),
    ]
