"""Statistics tracking and reporting for the chat hub."""

from __future__ import annotations

import threading
import time


class StatsManager:
    """
    Lifetime counters for a running hub.

    Tracks counters for:
    - Connections accepted
    - Name admissions, rejections and departures
    - Broadcast and private deliveries
    - Dropped and rate-limited lines
    - Bytes in/out and write failures
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "joins": 0,
            "parts": 0,
            "names_rejected": 0,
            "broadcasts": 0,
            "privates": 0,
            "deliveries": 0,
            "recipients_unknown": 0,
            "lines_dropped": 0,
            "rate_limited": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "write_errors": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def format_stats(self, *, online: int) -> str:
        """Format current statistics as a human-readable block."""
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0

        with self._lock:
            c = dict(self._counters)

        lines = [
            f"chathub {__version__} stats",
            f"uptime_s={uptime_s:.1f} online={online} connections={c['connections']}",
            "membership: joins={} parts={} names_rejected={}".format(
                c["joins"], c["parts"], c["names_rejected"]
            ),
            "messages: broadcasts={} privates={} deliveries={} recipients_unknown={}".format(
                c["broadcasts"], c["privates"], c["deliveries"], c["recipients_unknown"]
            ),
            "io: bytes_in={} bytes_out={} write_errors={} lines_dropped={} rate_limited={}".format(
                c["bytes_in"],
                c["bytes_out"],
                c["write_errors"],
                c["lines_dropped"],
                c["rate_limited"],
            ),
        ]
        return "\n".join(lines)
