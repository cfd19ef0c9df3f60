"""
Background CPU / memory sampling of the process under test.

A :class:`ResourceSampler` polls one process at a fixed interval from its
own daemon thread and buffers one :class:`~zkbench.models.Sample` per
successful tick.  The buffer is written only by that thread and handed
out only after :meth:`ResourceSampler.stop` has joined it, so callers
never observe a half-filled list.

A failure on a single tick (access denied, a transient read error) skips
that tick.  Once the process is gone sampling ends for good: its pid may
be reused by an unrelated process.  Neither case reaches the caller.

Key Concepts Demonstrated:
- ``threading.Event.wait`` as an interruptible periodic timer
- Priming ``psutil.Process.cpu_percent`` so the first tick is meaningful
- Locating a server by its listening port instead of by name
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import psutil

from zkbench.models import Sample

logger = logging.getLogger(__name__)


class ResourceSampler:
    """
    Periodically sample CPU percent and resident memory of *pid*.

    Args:
        pid: Process identifier of the server under test.
        interval: Seconds between ticks.
        on_sample: Optional callback invoked (from the sampler thread) with
            every Sample as it is taken.
        clock: Monotonic clock used to stamp ticks (injectable for tests).
    """

    def __init__(
        self,
        pid: int,
        interval: float = 0.25,
        *,
        on_sample: Callable[[Sample], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError(f"Sampling interval must be positive, got {interval}")

        self.pid = pid
        self.interval = interval
        self.on_sample = on_sample
        self._clock = clock
        self._process: psutil.Process | None = None
        # Set once the process is found missing; the pid is then never resolved again.
        self._gone = False
        self._samples: list[Sample] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.started_at: float | None = None
        self.stopped_at: float | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Prime the CPU counter and start the sampling thread."""
        if self._thread is not None:
            raise RuntimeError("ResourceSampler can only be started once")

        # cpu_percent(None) measures since the previous call; the first
        # call always returns 0.0.
        process = self._lookup()
        if process is not None:
            try:
                process.cpu_percent(interval=None)
            except psutil.Error as exc:
                logger.debug("Could not prime CPU counter for pid %s: %s", self.pid, exc)

        self.started_at = self._clock()
        self._thread = threading.Thread(
            target=self._run, name=f"resource-sampler-{self.pid}", daemon=True
        )
        self._thread.start()

    def stop(self) -> tuple[Sample, ...]:
        """
        Halt the timer and return every sample taken since :meth:`start`.

        Blocks until the sampling thread has exited, so a tick that was
        already in progress is either fully recorded or not at all.
        Calling ``stop()`` on a sampler that was never started returns an
        empty tuple.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
        if self.stopped_at is None:
            self.stopped_at = self._clock()
        return tuple(self._samples)

    @property
    def samples(self) -> tuple[Sample, ...]:
        return tuple(self._samples)

    def _lookup(self) -> psutil.Process | None:
        if self._process is None and not self._gone:
            try:
                self._process = psutil.Process(self.pid)
            except psutil.NoSuchProcess as exc:
                self._gone = True
                logger.debug("Process %s not available: %s", self.pid, exc)
            except psutil.Error as exc:
                logger.debug("Process %s not available: %s", self.pid, exc)
        return self._process

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            fired_at = self._clock()
            process = self._lookup()
            if self._gone:
                return
            if process is None:
                continue

            try:
                with process.oneshot():
                    cpu = process.cpu_percent(interval=None)
                    rss = process.memory_info().rss
            except psutil.NoSuchProcess as exc:
                # The pid may be handed to an unrelated process; never look it up again.
                logger.debug("Process %s exited; sampling ends: %s", self.pid, exc)
                self._gone = True
                self._process = None
                return
            except psutil.Error as exc:
                logger.debug("Skipping sample of pid %s: %s", self.pid, exc)
                continue

            sample = Sample(cpu_percent=cpu, memory_bytes=rss, taken_at=fired_at)
            self._samples.append(sample)
            if self.on_sample is not None:
                self.on_sample(sample)


def find_pid_by_port(port: int) -> int | None:
    """
    Return the pid of the process listening on TCP *port*, if visible.

    Processes owned by other users may hide their sockets; those are
    skipped rather than treated as errors.

    Returns:
        The pid, or ``None`` when no listening process could be found.
    """
    for proc in psutil.process_iter(["pid"]):
        try:
            connections = proc.net_connections(kind="inet")
        except psutil.Error:
            continue
        for conn in connections:
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
                logger.info("Found pid %s listening on port %d", proc.pid, port)
                return proc.pid

    logger.warning("No process found listening on port %d", port)
    return None
