"""
On-disk artifacts for offline analysis.

- :class:`RequestEventLog` writes one JSON object per request (JSON Lines),
  fed by Locust's ``request`` event.
- :class:`ResourceLog` writes a ``timestamp,cpu_percent,rss_bytes`` CSV,
  fed by a run-long :class:`~zkbench.sampler.ResourceSampler`.

Both are context managers and flush every record, so a run that is killed
still leaves a readable file behind.
"""

from __future__ import annotations

import csv
import json
import threading
import time
from pathlib import Path
from typing import Any

from zkbench.models import Sample


class RequestEventLog:
    """
    JSON Lines log of individual requests.

    ``phase`` is stamped onto every record; the sweep updates it before
    each phase and the staged engine sets it to the profile name.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("w", encoding="utf-8")
        self._lock = threading.Lock()
        self.phase = ""
        self.records = 0

    def on_request(
        self,
        request_type: str,
        name: str,
        response_time: float,
        response_length: int,
        exception: BaseException | None = None,
        **_kwargs: Any,
    ) -> None:
        """Listener with the signature of Locust's ``events.request``."""
        record = {
            "ts": time.time(),
            "phase": self.phase,
            "method": request_type,
            "name": name,
            "response_time_ms": round(float(response_time), 3),
            "response_length": int(response_length or 0),
            "success": exception is None,
            "error": None if exception is None else str(exception),
        }
        line = json.dumps(record, separators=(",", ":"))
        with self._lock:
            self._fh.write(line + "\n")
            self._fh.flush()
            self.records += 1

    def close(self) -> None:
        with self._lock:
            if not self._fh.closed:
                self._fh.close()

    def __enter__(self) -> RequestEventLog:
        return self

    def __exit__(self, *_exc_info: Any) -> None:
        self.close()


class ResourceLog:
    """CSV log of periodic process resource samples."""

    HEADER = ("timestamp", "cpu_percent", "rss_bytes")

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._fh)
        self._writer.writerow(self.HEADER)
        self._fh.flush()
        self._lock = threading.Lock()

    def on_sample(self, sample: Sample) -> None:
        """``on_sample`` callback for :class:`~zkbench.sampler.ResourceSampler`."""
        with self._lock:
            if self._fh.closed:
                return
            self._writer.writerow(
                [f"{time.time():.3f}", f"{sample.cpu_percent:.1f}", sample.memory_bytes]
            )
            self._fh.flush()

    def close(self) -> None:
        with self._lock:
            if not self._fh.closed:
                self._fh.close()

    def __enter__(self) -> ResourceLog:
        return self

    def __exit__(self, *_exc_info: Any) -> None:
        self.close()
