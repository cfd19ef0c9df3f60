# ruff: noqa: E402
"""
``zkbench`` command line.

Three commands:

- ``sweep``: readiness probe, preflight, then every endpoint at every
  concurrency level with per-phase CPU/memory sampling; prints the summary
  table.
- ``staged``: readiness probe, then one ramping arrival-rate profile with
  pass/fail thresholds; prints the staged report.
- ``check-thresholds``: gate a Locust ``*_stats.csv`` on a profile's
  thresholds.

Every option defaults to the configuration selected by ``--env`` (or
``ZKBENCH_ENV``), so a bare ``zkbench sweep`` reproduces the standard
benchmark.

Exit codes:

- ``0``: run completed (and, for ``staged``, every threshold passed)
- ``1``: at least one threshold was breached
- ``2``: the tool itself failed (bad options, unreadable files, ...)
- ``3``: fatal setup failure: service not ready or preflight broken

Usage examples::

    zkbench sweep --base-url http://localhost:8080 --levels 1,10,20
    zkbench sweep --routes optimised --event-log out/events.jsonl \
        --resource-log out/top.csv
    zkbench staged --profile stress --pace-ms 50
    zkbench check-thresholds --stats out/run_stats.csv --profile light
"""

from __future__ import annotations

# Locust monkey-patches the standard library via gevent; that has to
# happen before any socket or thread is created.
import locust  # noqa: F401

import argparse
import contextlib
import logging
import signal
import sys
import threading
from collections.abc import Callable, Iterator, Sequence
from urllib.parse import urlsplit

from zkbench import __version__, check_thresholds
from zkbench.config import Config, get_config, parse_levels
from zkbench.endpoints import ROUTE_PRESETS, build_endpoint_specs, resolve_routes
from zkbench.eventlog import RequestEventLog, ResourceLog
from zkbench.loadgen import LocustPhaseRunner
from zkbench.preflight import PreflightError, PreflightOrchestrator, ServiceNotReadyError
from zkbench.profiles import get_profile
from zkbench.report import render_staged_report, render_summary_table
from zkbench.sampler import ResourceSampler, find_pid_by_port
from zkbench.staged import run_staged
from zkbench.sweep import SweepDriver

logger = logging.getLogger(__name__)

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2
EXIT_SETUP_FAILURE = 3


def configure_logging(verbose: bool = False) -> None:
    """Send diagnostics to stderr in the same format as the rest of the tooling."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _add_target_arguments(parser: argparse.ArgumentParser, settings: type[Config]) -> None:
    parser.add_argument("--base-url", default=settings.BASE_URL, help="Root URL of the service")
    parser.add_argument(
        "--routes",
        default=settings.ROUTES,
        choices=sorted(ROUTE_PRESETS),
        help="Route preset of the service",
    )
    parser.add_argument(
        "--pid",
        type=int,
        default=None,
        help="Server process to sample (default: the process listening on the base URL's port)",
    )
    parser.add_argument("--event-log", default=None, help="Write one JSON line per request here")
    parser.add_argument(
        "--resource-log",
        default=None,
        help="Write a timestamp,cpu_percent,rss_bytes CSV for the whole run here",
    )
    parser.add_argument(
        "--resource-log-interval",
        type=float,
        default=settings.RESOURCE_LOG_INTERVAL,
        help="Seconds between resource log rows",
    )


def build_parser(settings: type[Config]) -> argparse.ArgumentParser:
    """Build the ``zkbench`` argument parser with defaults taken from *settings*."""
    parser = argparse.ArgumentParser(
        prog="zkbench",
        description="Load-test and resource-monitor a ZK-Auth register/proof/verify service.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--env",
        default=None,
        help="Configuration environment (local, testing, ci); default: $ZKBENCH_ENV",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser("sweep", help="Run the concurrency sweep")
    _add_target_arguments(sweep, settings)
    sweep.add_argument(
        "--levels",
        type=parse_levels,
        default=settings.CONCURRENCY_LEVELS,
        help="Comma-separated, strictly ascending concurrency levels",
    )
    sweep.add_argument(
        "--duration",
        type=float,
        default=settings.PHASE_DURATION,
        help="Seconds per phase",
    )
    sweep.add_argument(
        "--sample-interval",
        type=float,
        default=settings.SAMPLE_INTERVAL,
        help="Seconds between CPU/memory samples during a phase",
    )

    staged = commands.add_parser("staged", help="Run a staged load profile")
    _add_target_arguments(staged, settings)
    staged.add_argument("--profile", default=settings.PROFILE, help="Profile name")
    staged.add_argument(
        "--profiles-file",
        default=settings.PROFILES_FILE,
        help="YAML file defining the profiles",
    )
    staged.add_argument(
        "--pace-ms",
        type=int,
        default=settings.PACE_MS,
        help="Pause in milliseconds at the end of every chain iteration",
    )

    gate = commands.add_parser("check-thresholds", help="Gate a Locust stats CSV on a profile")
    check_thresholds.add_arguments(gate, settings)
    return parser


def _target_port(base_url: str) -> int:
    parts = urlsplit(base_url)
    if parts.port is not None:
        return parts.port
    return 443 if parts.scheme == "https" else 80


def _resolve_pid(args: argparse.Namespace) -> int | None:
    if args.pid is not None:
        return args.pid
    return find_pid_by_port(_target_port(args.base_url))


@contextlib.contextmanager
def _stop_on_signals(stop: Callable[[], None]) -> Iterator[None]:
    """Call *stop* on SIGINT/SIGTERM for the duration of the block."""

    def _handler(signum, _frame):
        logger.warning("Received %s; stopping", signal.Signals(signum).name)
        stop()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@contextlib.contextmanager
def _artifacts(
    args: argparse.Namespace, pid: int | None
) -> Iterator[RequestEventLog | None]:
    """Open the optional event log and run the run-long resource logger."""
    with contextlib.ExitStack() as stack:
        event_log = None
        if args.event_log:
            event_log = stack.enter_context(RequestEventLog(args.event_log))

        if args.resource_log:
            if pid is None:
                logger.warning("No target process; resource log %s not written", args.resource_log)
            else:
                resource_log = stack.enter_context(ResourceLog(args.resource_log))
                sampler = ResourceSampler(
                    pid, args.resource_log_interval, on_sample=resource_log.on_sample
                )
                sampler.start()
                stack.callback(sampler.stop)

        yield event_log


def _preflight(args: argparse.Namespace, settings: type[Config], *, full: bool):
    """Probe readiness and, when *full*, run the register/proof/verify preflight."""
    with PreflightOrchestrator(
        args.base_url,
        resolve_routes(args.routes),
        timeout=settings.REQUEST_TIMEOUT,
        ready_attempts=settings.READY_ATTEMPTS,
        ready_delay=settings.READY_DELAY,
    ) as preflight:
        preflight.wait_until_ready()
        return preflight.run() if full else None


def run_sweep(args: argparse.Namespace, settings: type[Config]) -> int:
    fixture = _preflight(args, settings, full=True)
    endpoints = build_endpoint_specs(fixture, resolve_routes(args.routes))
    pid = _resolve_pid(args)

    with _artifacts(args, pid) as event_log:
        driver = SweepDriver(
            endpoints,
            args.levels,
            args.duration,
            LocustPhaseRunner(
                args.base_url, request_timeout=settings.REQUEST_TIMEOUT, event_log=event_log
            ),
            target_pid=pid,
            sample_interval=args.sample_interval,
        )
        with _stop_on_signals(driver.stop):
            records = driver.run()

    print(render_summary_table(records))
    return EXIT_PASS


def run_staged_command(args: argparse.Namespace, settings: type[Config]) -> int:
    profile = get_profile(args.profile, args.profiles_file)
    _preflight(args, settings, full=False)
    pid = _resolve_pid(args) if args.resource_log else None

    stop_event = threading.Event()
    with _artifacts(args, pid) as event_log, _stop_on_signals(stop_event.set):
        result = run_staged(
            profile,
            args.base_url,
            routes=resolve_routes(args.routes),
            pace_ms=args.pace_ms,
            event_log=event_log,
            stop_event=stop_event,
        )

    print(render_staged_report(result))
    return EXIT_PASS if result.passed else EXIT_THRESHOLD_BREACH


def main(argv: Sequence[str] | None = None) -> int:
    """
    Entry point of the ``zkbench`` console script.

    Returns:
        The process exit code (see the module docstring).
    """
    argv = list(sys.argv[1:] if argv is None else argv)

    # --env must be known before the parser is built, because it supplies
    # every other default.
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--env", default=None)
    known, _ = pre.parse_known_args(argv)
    settings = get_config(known.env)

    args = build_parser(settings).parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "check-thresholds":
        return check_thresholds.run(args)

    try:
        if args.command == "sweep":
            return run_sweep(args, settings)
        return run_staged_command(args, settings)
    except (ServiceNotReadyError, PreflightError) as exc:
        print(f"Fatal: {exc}", file=sys.stderr)
        return EXIT_SETUP_FAILURE
    except Exception as exc:  # pragma: no cover - defensive CLI guard
        logger.debug("Unhandled error", exc_info=True)
        print(f"zkbench failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
