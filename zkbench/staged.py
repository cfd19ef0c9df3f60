"""
Staged load profile engine, driven by Locust.

Runs the register → proof → verify chain on a ramping arrival-rate
schedule:

1. exactly ``pre_allocated_workers`` Locust users are spawned up front;
2. an :class:`~zkbench.ramp.ArrivalScheduler` produces one token per
   arrival on the profile's schedule;
3. each user blocks on the token queue and runs one
   :class:`~zkbench.chain.ChainIteration` per token.

When every user is busy, arrivals queue instead of spawning more users.
After the last stage, queued and in-flight iterations get up to the
profile's ``graceful_stop`` to finish; whatever is still queued then is
dropped.  The same user class backs ``zkbench/locustfile.py``.

Importing this module imports Locust (and with it gevent's monkey
patching), so only the command line and the locustfile import it.

Key Concepts Demonstrated:
- A fixed Locust user pool fed by an open-loop arrival schedule
- ``on_start`` to bind per-user state to the Locust HTTP session
- Threshold evaluation over metrics gathered from many users
"""

from __future__ import annotations

import logging
import threading
import time

from locust import HttpUser, constant, task
from locust.env import Environment

from zkbench.chain import ChainIteration, IterationTally
from zkbench.eventlog import RequestEventLog
from zkbench.metrics import MetricSink
from zkbench.models import Routes, StagedResult
from zkbench.profiles import LoadProfile, evaluate_thresholds
from zkbench.ramp import ArrivalScheduler

logger = logging.getLogger(__name__)

# How long an idle user blocks on the token queue before re-checking.
TAKE_TIMEOUT = 0.5
# Polling interval while waiting for the schedule or the drain.
POLL_INTERVAL = 0.1


class ChainUser(HttpUser):
    """
    Virtual worker that runs one chain iteration per scheduled arrival.

    The run wiring (scheduler, sink, tally, routes, pace) is attached as
    class attributes by :func:`make_chain_user` or by the locustfile's
    ``init`` hook before any user is spawned.
    """

    abstract = True
    wait_time = constant(0)

    scheduler: ArrivalScheduler | None = None
    sink: MetricSink | None = None
    tally: IterationTally | None = None
    routes: Routes = Routes()
    pace_seconds: float = 0.1

    chain: ChainIteration

    def on_start(self) -> None:
        """Bind a chain iteration to this user's HTTP session."""
        self.chain = ChainIteration(
            self.client,
            self.routes,
            self.sink if self.sink is not None else MetricSink(),
            pace_seconds=self.pace_seconds,
        )

    @task
    def iterate(self) -> None:
        scheduler = self.scheduler
        if scheduler is None or not scheduler.take(timeout=TAKE_TIMEOUT):
            return
        try:
            outcome = self.chain.run()
            if self.tally is not None:
                self.tally.record(outcome)
        finally:
            scheduler.done()


def make_chain_user(
    *,
    scheduler: ArrivalScheduler,
    sink: MetricSink,
    tally: IterationTally,
    routes: Routes,
    pace_seconds: float,
) -> type[ChainUser]:
    """Return a concrete :class:`ChainUser` subclass wired to one run."""
    return type(
        "ZkChainUser",
        (ChainUser,),
        {
            "abstract": False,
            "scheduler": scheduler,
            "sink": sink,
            "tally": tally,
            "routes": routes,
            "pace_seconds": pace_seconds,
        },
    )


def collect_result(
    profile: LoadProfile,
    sink: MetricSink,
    scheduler: ArrivalScheduler,
    tally: IterationTally,
    *,
    elapsed: float,
    interrupted: bool,
) -> StagedResult:
    """Freeze the counters of a finished run into a :class:`StagedResult`."""
    return StagedResult(
        profile=profile,
        trends=sink.trend_stats(),
        checks=sink.checks(),
        requests=sink.requests,
        failed_requests=sink.failed_requests,
        thresholds=evaluate_thresholds(profile.thresholds, sink),
        scheduled=scheduler.scheduled,
        started=scheduler.started,
        completed=tally.completed,
        failed_verify=tally.failed_verify,
        abandoned=tally.abandoned,
        dropped=scheduler.dropped,
        peak_backlog=scheduler.peak_backlog,
        peak_active=scheduler.peak_active,
        elapsed=elapsed,
        interrupted=interrupted,
    )


def run_staged(
    profile: LoadProfile,
    base_url: str,
    *,
    routes: Routes | None = None,
    pace_ms: int = 100,
    event_log: RequestEventLog | None = None,
    stop_event: threading.Event | None = None,
) -> StagedResult:
    """
    Execute *profile* against *base_url* and return the evaluated result.

    Args:
        profile: The load profile to run.
        base_url: Root URL of the service under test.
        routes: Route layout of the service.
        pace_ms: Pause at the end of every chain iteration.
        event_log: Optional per-request JSON Lines log.
        stop_event: Set it to end the run early; queued iterations are
            dropped and in-flight ones are stopped.
    """
    stop_event = stop_event or threading.Event()
    sink = MetricSink()
    tally = IterationTally()
    scheduler = ArrivalScheduler(profile)
    user_class = make_chain_user(
        scheduler=scheduler,
        sink=sink,
        tally=tally,
        routes=routes or Routes(),
        pace_seconds=pace_ms / 1000.0,
    )

    env = Environment(user_classes=[user_class], host=base_url.rstrip("/"))
    if event_log is not None:
        event_log.phase = profile.name
        env.events.request.add_listener(event_log.on_request)

    runner = env.create_local_runner()
    workers = profile.pre_allocated_workers
    started = time.monotonic()
    runner.start(workers, spawn_rate=workers)
    producer = threading.Thread(target=scheduler.run, name="arrival-scheduler", daemon=True)
    producer.start()

    interrupted = False
    while not scheduler.finished.is_set():
        if stop_event.wait(POLL_INTERVAL):
            interrupted = True
            break

    if not interrupted:
        deadline = time.monotonic() + profile.graceful_stop
        while not scheduler.drained and time.monotonic() < deadline:
            if stop_event.wait(POLL_INTERVAL):
                interrupted = True
                break
        if not scheduler.drained and not interrupted:
            logger.warning(
                "Graceful stop of %.0fs elapsed with %d running and %d queued iterations",
                profile.graceful_stop,
                scheduler.active,
                scheduler.backlog,
            )

    scheduler.stop()
    runner.quit()
    runner.greenlet.join()
    producer.join()
    elapsed = time.monotonic() - started

    result = collect_result(
        profile, sink, scheduler, tally, elapsed=elapsed, interrupted=interrupted
    )
    logger.info(
        "Profile %s done: %d scheduled, %d completed, %d abandoned, %d dropped",
        profile.name,
        result.scheduled,
        result.completed,
        result.abandoned,
        result.dropped,
    )
    return result
