"""
Ramping arrival-rate scheduling.

The staged engine is open-loop: iterations *arrive* at a rate dictated by
the profile, whether or not the server keeps up.  Arrivals are turned
into tokens on a queue; a fixed pool of workers takes tokens and runs one
chain iteration per token.  When every worker is busy the tokens wait in
the queue (the backlog).  The pool never grows.

Arrival times follow from the profile alone.  Within a stage the rate
moves linearly from the previous target (or the start rate) to the
stage's target, and the *n*-th arrival happens at the moment the
integral of the rate reaches *n*.

Key Concepts Demonstrated:
- Closed-form inversion of a piecewise-linear rate integral
- ``queue.Queue`` as the hand-off between one producer and a worker pool
- Interruptible waits so a stop request never sleeps out a long delay
"""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from collections.abc import Callable, Iterator, Sequence

from zkbench.profiles import LoadProfile, Stage

logger = logging.getLogger(__name__)

# Tolerance for float drift when the rate integral lands exactly on an integer.
_EPSILON = 1e-9


def _time_to_reach(need: float, r0: float, r1: float, duration: float) -> float:
    """
    Seconds into a stage at which the rate integral reaches *need*.

    The rate is ``r0 + (r1 - r0) * t / duration``, so the integral is
    ``a*t**2 + r0*t`` with ``a = (r1 - r0) / (2 * duration)``.
    """
    if need <= 0:
        return 0.0

    a = (r1 - r0) / (2 * duration)
    discriminant = max(r0 * r0 + 4 * a * need, 0.0)
    denominator = r0 + math.sqrt(discriminant)
    if denominator <= 0:
        return 0.0
    return min(2 * need / denominator, duration)


def iter_arrival_offsets(
    start_rate: float, stages: Sequence[Stage], time_unit: float = 1.0
) -> Iterator[float]:
    """
    Yield the offset in seconds of every arrival, in increasing order.

    Args:
        start_rate: Rate per *time_unit* at the start of the first stage.
        stages: Ordered ramp stages (rates per *time_unit*).
        time_unit: Seconds that the rates refer to.
    """
    if time_unit <= 0:
        raise ValueError(f"time_unit must be positive, got {time_unit}")

    arrival = 1
    stage_start = 0.0
    integrated = 0.0
    r0 = start_rate / time_unit
    for stage in stages:
        r1 = stage.target / time_unit
        stage_total = (r0 + r1) / 2 * stage.duration
        while arrival <= integrated + stage_total + _EPSILON:
            need = arrival - integrated
            yield stage_start + _time_to_reach(need, r0, r1, stage.duration)
            arrival += 1
        integrated += stage_total
        stage_start += stage.duration
        r0 = r1


def arrival_offsets(
    start_rate: float, stages: Sequence[Stage], time_unit: float = 1.0
) -> list[float]:
    """List form of :func:`iter_arrival_offsets`."""
    return list(iter_arrival_offsets(start_rate, stages, time_unit))


class ArrivalScheduler:
    """
    Produce iteration tokens for a fixed worker pool on the profile's schedule.

    :meth:`run` is the producer and is meant to run in its own thread or
    greenlet.  Workers call :meth:`take` to wait for a token and
    :meth:`done` once the iteration it stands for has finished.

    Args:
        profile: The load profile to schedule.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(self, profile: LoadProfile, *, clock: Callable[[], float] = time.monotonic):
        self.profile = profile
        self._clock = clock
        self._tokens: queue.Queue[int] = queue.Queue()
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self.finished = threading.Event()

        self.scheduled = 0
        self.started = 0
        self.completed = 0
        self.dropped = 0
        self.active = 0
        self.peak_backlog = 0
        self.peak_active = 0

    @property
    def backlog(self) -> int:
        return self._tokens.qsize()

    @property
    def drained(self) -> bool:
        """True once the schedule is over and no iteration is queued or running."""
        with self._lock:
            return self.finished.is_set() and self._tokens.empty() and self.active == 0

    def run(self) -> None:
        """Emit one token per arrival until the schedule ends or :meth:`stop` is called."""
        profile = self.profile
        logger.info(
            "Schedule %s: %.0fs, peak %.1f iterations/s, %d workers",
            profile.name,
            profile.total_duration,
            profile.peak_rate,
            profile.pre_allocated_workers,
        )
        started_at = self._clock()
        try:
            for offset in iter_arrival_offsets(profile.start_rate, profile.stages, profile.time_unit):
                delay = started_at + offset - self._clock()
                if delay > 0 and self._stop_event.wait(delay):
                    break
                if self._stop_event.is_set():
                    break
                with self._lock:
                    self.scheduled += 1
                    self._tokens.put(self.scheduled)
                    self.peak_backlog = max(self.peak_backlog, self._tokens.qsize())
        finally:
            self.finished.set()
            logger.info("Schedule %s finished after %d arrivals", profile.name, self.scheduled)

    def take(self, timeout: float | None = None) -> bool:
        """
        Wait up to *timeout* seconds for a token.

        Returns:
            True if a token was taken; the caller must call :meth:`done`
            once the iteration has finished.
        """
        try:
            self._tokens.get(timeout=timeout)
        except queue.Empty:
            return False
        with self._lock:
            self.started += 1
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
        return True

    def done(self) -> None:
        with self._lock:
            self.active -= 1
            self.completed += 1

    def stop(self) -> int:
        """
        Stop producing and discard every queued token.

        Returns:
            The number of tokens discarded by this call.
        """
        self._stop_event.set()
        discarded = 0
        while True:
            try:
                self._tokens.get_nowait()
            except queue.Empty:
                break
            discarded += 1
        with self._lock:
            self.dropped += discarded
        if discarded:
            logger.warning("Dropped %d queued iterations on stop", discarded)
        return discarded
