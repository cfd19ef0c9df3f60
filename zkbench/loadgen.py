"""
Locust-backed phase runner for the concurrency sweep.

Each phase gets a brand-new :class:`locust.env.Environment` and therefore
brand-new statistics, so figures can never leak from one phase into the
next.  The users are closed-loop: every user keeps exactly one request in
flight and fires the next one as soon as the previous one returns
(``wait_time = constant(0)``).  The number of users is therefore the
concurrency level.

Importing this module imports Locust, which monkey-patches the standard
library through gevent.  Only the command line imports it.

Key Concepts Demonstrated:
- Driving Locust as a library (``Environment`` + ``LocalRunner``)
- Per-endpoint ``HttpUser`` classes built at runtime from a template
- ``catch_response=True`` to classify non-2xx responses as failures
"""

from __future__ import annotations

import logging
import threading
import time

from locust import HttpUser, constant, task
from locust.env import Environment

from zkbench.aggregate import phase_metrics
from zkbench.eventlog import RequestEventLog
from zkbench.models import EndpointSpec, LoadMetrics

logger = logging.getLogger(__name__)


class EndpointUser(HttpUser):
    """
    Closed-loop user that repeatedly sends one endpoint's request.

    Concrete subclasses are created by :func:`make_endpoint_user`; Locust
    never spawns this class directly.
    """

    abstract = True
    wait_time = constant(0)

    endpoint: EndpointSpec
    request_timeout: float = 60.0

    @task
    def send(self) -> None:
        spec = self.endpoint
        with self.client.request(
            spec.http_method,
            spec.path,
            json=spec.build_request(),
            name=spec.name,
            timeout=self.request_timeout,
            catch_response=True,
        ) as response:
            if not 200 <= response.status_code < 300:
                response.failure(f"Expected 2xx, got {response.status_code}")
                return
            response.success()


def make_endpoint_user(endpoint: EndpointSpec, request_timeout: float) -> type[EndpointUser]:
    """Return a concrete :class:`EndpointUser` subclass bound to *endpoint*."""
    return type(
        f"{endpoint.name[:1].upper()}{endpoint.name[1:]}User",
        (EndpointUser,),
        {"abstract": False, "endpoint": endpoint, "request_timeout": request_timeout},
    )


class LocustPhaseRunner:
    """
    Run one sweep phase with Locust.

    Args:
        base_url: Root URL of the service under test.
        request_timeout: Per-request timeout in seconds.
        event_log: Optional per-request JSON Lines log.
    """

    def __init__(
        self,
        base_url: str,
        *,
        request_timeout: float = 60.0,
        event_log: RequestEventLog | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.event_log = event_log

    def run(
        self,
        endpoint: EndpointSpec,
        concurrency: int,
        duration: float,
        stop_event: threading.Event,
    ) -> LoadMetrics:
        """
        Hold *concurrency* users on *endpoint* for *duration* seconds.

        Returns early, with ``completed=False``, when *stop_event* is set.
        """
        user_class = make_endpoint_user(endpoint, self.request_timeout)
        env = Environment(user_classes=[user_class], host=self.base_url)
        if self.event_log is not None:
            self.event_log.phase = f"{endpoint.name}@{concurrency}"
            env.events.request.add_listener(self.event_log.on_request)

        runner = env.create_local_runner()
        started = time.monotonic()
        runner.start(concurrency, spawn_rate=concurrency)
        interrupted = stop_event.wait(duration)
        elapsed = time.monotonic() - started
        runner.quit()
        runner.greenlet.join()

        if interrupted:
            logger.info("Phase %s @ %d interrupted after %.1fs", endpoint.name, concurrency, elapsed)

        return phase_metrics(env.stats.total, elapsed, completed=not interrupted)

