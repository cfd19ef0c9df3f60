# ruff: noqa: E402
"""
Locust entrypoint for the staged load profile engine.

Lets the staged engine run under the stock ``locust`` command, with the
web UI or headless, instead of through ``zkbench staged``.  The profile
is chosen with a custom command-line option; the user pool size, the
arrival schedule and the thresholds all come from the profile.

Usage examples::

    # Light profile, headless, against a local service:
    locust -f zkbench/locustfile.py --headless --host http://localhost:8080 \
        --zk-profile light

    # Stress profile against the optimised routes, no pacing:
    locust -f zkbench/locustfile.py --headless --host http://localhost:8080 \
        --zk-profile stress --zk-routes optimised --zk-pace-ms 0

When a threshold is breached the process exits with status ``1``.

Key Concepts Demonstrated:
- ``events.init_command_line_parser`` for custom Locust options
- A ``LoadTestShape`` that holds a fixed pool for the schedule's length
- ``environment.process_exit_code`` to gate CI on thresholds
"""

from __future__ import annotations

import logging
import sys
import threading
import time
from pathlib import Path

from locust import LoadTestShape, events

# Locust may be started from any directory; make ``zkbench`` importable
# even when the package has not been installed.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from zkbench.chain import IterationTally
from zkbench.config import get_config
from zkbench.endpoints import ROUTE_PRESETS, resolve_routes
from zkbench.eventlog import RequestEventLog
from zkbench.metrics import MetricSink
from zkbench.profiles import LoadProfile, get_profile
from zkbench.ramp import ArrivalScheduler
from zkbench.report import render_staged_report
from zkbench.staged import ChainUser, collect_result

logger = logging.getLogger(__name__)

_settings = get_config()


class ZkChainUser(ChainUser):
    """Concrete chain user; wired to the run by :func:`_configure_run`."""


class _RunState:
    """Objects shared between the hooks of one Locust process."""

    profile: LoadProfile | None = None
    scheduler: ArrivalScheduler | None = None
    sink: MetricSink | None = None
    tally: IterationTally | None = None
    event_log: RequestEventLog | None = None
    producer: threading.Thread | None = None
    started_at: float = 0.0


@events.init_command_line_parser.add_listener
def _add_profile_options(parser, **_kwargs):
    parser.add_argument(
        "--zk-profile",
        default=_settings.PROFILE,
        help="Staged load profile name (light, average, stress)",
    )
    parser.add_argument(
        "--zk-profiles-file",
        default=str(_settings.PROFILES_FILE),
        help="YAML file defining the load profiles",
    )
    parser.add_argument(
        "--zk-pace-ms",
        type=int,
        default=_settings.PACE_MS,
        help="Pause in milliseconds at the end of every chain iteration",
    )
    parser.add_argument(
        "--zk-routes",
        default=_settings.ROUTES,
        choices=sorted(ROUTE_PRESETS),
        help="Route preset of the service",
    )
    parser.add_argument(
        "--zk-event-log",
        default="",
        help="Optional JSON Lines file receiving one record per request",
    )


@events.init.add_listener
def _configure_run(environment, **_kwargs):
    """Load the profile and attach the run's shared objects to the user class."""
    options = environment.parsed_options
    if options is None:
        return

    profile = get_profile(options.zk_profile, options.zk_profiles_file)
    _RunState.profile = profile
    _RunState.scheduler = ArrivalScheduler(profile)
    _RunState.sink = MetricSink()
    _RunState.tally = IterationTally()

    ZkChainUser.scheduler = _RunState.scheduler
    ZkChainUser.sink = _RunState.sink
    ZkChainUser.tally = _RunState.tally
    ZkChainUser.routes = resolve_routes(options.zk_routes)
    ZkChainUser.pace_seconds = options.zk_pace_ms / 1000.0

    if options.zk_event_log:
        _RunState.event_log = RequestEventLog(options.zk_event_log)
        _RunState.event_log.phase = profile.name
        environment.events.request.add_listener(_RunState.event_log.on_request)

    logger.info(
        "Profile %s: %d workers, %.0fs of stages, graceful stop %.0fs",
        profile.name,
        profile.pre_allocated_workers,
        profile.total_duration,
        profile.graceful_stop,
    )


@events.test_start.add_listener
def _start_schedule(environment, **_kwargs):
    scheduler = _RunState.scheduler
    if scheduler is None or _RunState.producer is not None:
        return
    _RunState.started_at = time.monotonic()
    _RunState.producer = threading.Thread(
        target=scheduler.run, name="arrival-scheduler", daemon=True
    )
    _RunState.producer.start()


@events.quitting.add_listener
def _evaluate_thresholds(environment, **_kwargs):
    """Print the staged report and fail the process on a breached threshold."""
    profile, scheduler = _RunState.profile, _RunState.scheduler
    if profile is None or scheduler is None or _RunState.sink is None or _RunState.tally is None:
        return

    scheduler.stop()
    result = collect_result(
        profile,
        _RunState.sink,
        scheduler,
        _RunState.tally,
        elapsed=time.monotonic() - _RunState.started_at if _RunState.started_at else 0.0,
        interrupted=not scheduler.finished.is_set(),
    )
    print(render_staged_report(result))

    if _RunState.event_log is not None:
        _RunState.event_log.close()
    if not result.passed:
        environment.process_exit_code = 1


class ProfileShape(LoadTestShape):
    """
    Hold exactly ``pre_allocated_workers`` users while the schedule runs.

    The run ends once the schedule has finished and every iteration has
    drained, or once the graceful stop after the last stage has elapsed.
    """

    def tick(self):
        profile, scheduler = _RunState.profile, _RunState.scheduler
        if profile is None or scheduler is None:
            return None

        run_time = self.get_run_time()
        if scheduler.finished.is_set():
            if scheduler.drained or run_time > profile.total_duration + profile.graceful_stop:
                return None

        workers = profile.pre_allocated_workers
        return workers, workers
