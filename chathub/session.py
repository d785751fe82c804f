from __future__ import annotations

import enum
import logging
import queue
import socket
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO

from .codec import decode, encode
from .config import HubRuntimeConfig
from .constants import SUBMITNAME
from .messages import parse_request
from .registry import Registry
from .router import MessageRouter
from .stats import StatsManager
from .util import normalize_name


class SessionState(enum.Enum):
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class _RateState:
    """Token bucket state for rate limiting."""

    tokens: float
    last_refill: float


# Writer thread shutdown marker.
_CLOSE = None

# Returned by _read_line for a line over max_line_bytes.
_OVERSIZED = object()


class Session:
    """
    Server-side state for one connected peer.

    This class is responsible for:
    - Name negotiation (SUBMITNAME until a name is admitted)
    - Turning inbound command lines into dispatch requests
    - The peer's single outbound path: a queue drained by one writer thread
    - Teardown: eviction, departure announcement, socket release

    ``run()`` is the reader loop and is meant to own a thread of its own.
    ``send()`` may be called from any thread and never blocks.
    """

    def __init__(
        self,
        sock: socket.socket,
        address,
        *,
        registry: Registry,
        router: MessageRouter,
        config: HubRuntimeConfig | None = None,
        stats: StatsManager | None = None,
        session_id: int = 0,
    ) -> None:
        self.sock = sock
        self.address = address
        self.registry = registry
        self.router = router
        self.config = config or router.config
        self.stats = stats or router.stats
        self.session_id = session_id
        self.log = logging.getLogger("chathub.session")

        self.name: str | None = None
        self.state = SessionState.NEGOTIATING

        self._state_lock = threading.Lock()
        self._outbox: queue.SimpleQueue[str | None] = queue.SimpleQueue()
        self._writer = threading.Thread(
            target=self._write_loop,
            name=f"chathub-writer-{session_id}",
            daemon=True,
        )
        self._closed = threading.Event()

        self._rate = _RateState(
            tokens=float(self.config.rate_limit_msgs_per_minute),
            last_refill=time.monotonic(),
        )

    def __repr__(self) -> str:
        return f"<Session id={self.session_id} name={self.name!r} state={self.state.value}>"

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def run(self) -> None:
        """Serve the peer until end of stream, an I/O error, or close()."""
        self.log.info("Session opened id=%s peer=%s", self.session_id, self._fmt_peer())
        self._writer.start()
        try:
            with self.sock.makefile("rb") as rfile:
                if self._negotiate(rfile):
                    self._serve(rfile)
        except OSError as e:
            if self.state is not SessionState.CLOSED:
                self.log.info(
                    "Read failed id=%s name=%r err=%s", self.session_id, self.name, e
                )
        finally:
            self.close()

    def send(self, line: str) -> bool:
        """Queue one line for the peer. Returns False once the session is closed."""
        if self.state is SessionState.CLOSED:
            return False
        self._outbox.put(line)
        return True

    def close(self) -> None:
        """
        Move to CLOSED. Idempotent.

        Evicts the admitted name and announces the departure before the writer
        is told to finish; the socket is released by the writer once it has
        drained what was already queued.
        """
        with self._state_lock:
            if self.state is SessionState.CLOSED:
                return
            self.state = SessionState.CLOSED

        name = self.name
        if name is not None:
            with self.registry.lock:
                if self.registry.evict(name, self):
                    self.router.announce_left(name)

        self.log.info(
            "Session closed id=%s name=%r peer=%s",
            self.session_id,
            name,
            self._fmt_peer(),
        )

        self._outbox.put(_CLOSE)
        try:
            # Wakes the reader if it is blocked; queued output still drains.
            self.sock.shutdown(socket.SHUT_RD)
        except OSError:
            pass

        if not self._writer.is_alive() and self._writer.ident is None:
            self._release_socket()

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until the socket has been released."""
        return self._closed.wait(timeout)

    def _negotiate(self, rfile: BinaryIO) -> bool:
        max_chars = int(self.config.name_max_chars)
        while True:
            self.send(SUBMITNAME)
            line = self._read_line(rfile)
            if line is None:
                return False

            candidate = None
            if line is not _OVERSIZED:
                candidate = normalize_name(line, max_chars=max_chars)
            if candidate is not None and self._try_activate(candidate):
                self.log.info(
                    "Name accepted id=%s name=%r peer=%s",
                    self.session_id,
                    candidate,
                    self._fmt_peer(),
                )
                return True

            self.stats.inc("names_rejected")
            if line is not _OVERSIZED:
                self.log.debug("Name rejected id=%s candidate=%r", self.session_id, line)

    def _try_activate(self, name: str) -> bool:
        # Admission, the state change and the join announcement form one
        # critical section so no other entry or exit event can interleave.
        with self.registry.lock:
            with self._state_lock:
                if self.state is not SessionState.NEGOTIATING:
                    return False
                if not self.registry.try_admit(name, self):
                    return False
                self.name = name
                self.state = SessionState.ACTIVE
            self.router.announce_joined(self)
        return True

    def _serve(self, rfile: BinaryIO) -> None:
        while True:
            line = self._read_line(rfile)
            if line is None:
                return
            if line is _OVERSIZED:
                continue

            if not self._refill_and_take(1.0):
                self.stats.inc("rate_limited")
                self.log.debug("Rate limited id=%s name=%r", self.session_id, self.name)
                continue

            request = parse_request(self.name, line)
            if request is None:
                self.stats.inc("lines_dropped")
                if self.log.isEnabledFor(logging.DEBUG):
                    self.log.debug(
                        "Dropped line id=%s name=%r chars=%s",
                        self.session_id,
                        self.name,
                        len(line),
                    )
                continue

            self.router.dispatch(request)

    def _read_line(self, rfile: BinaryIO):
        """Next inbound line without its terminator, or None at end of stream.

        A line whose content, terminator excluded, is longer than
        ``max_line_bytes`` is consumed whole and reported as ``_OVERSIZED``.
        """
        limit = int(self.config.max_line_bytes)
        # Room for the content plus a CRLF terminator.
        raw = rfile.readline(limit + 2) if limit > 0 else rfile.readline()
        if not raw:
            return None
        self.stats.inc("bytes_in", len(raw))

        if limit > 0 and len(raw.rstrip(b"\r\n")) > limit:
            if not raw.endswith(b"\n") and not self._discard_rest_of_line(rfile, limit):
                return None
            self.stats.inc("lines_dropped")
            self.log.debug("Oversized line dropped id=%s name=%r", self.session_id, self.name)
            return _OVERSIZED

        return decode(raw)

    def _discard_rest_of_line(self, rfile: BinaryIO, chunk: int) -> bool:
        while True:
            raw = rfile.readline(chunk)
            if not raw:
                return False
            self.stats.inc("bytes_in", len(raw))
            if raw.endswith(b"\n"):
                return True

    def _refill_and_take(self, cost: float) -> bool:
        """
        Token bucket rate limiting.

        Always succeeds when ``rate_limit_msgs_per_minute`` is 0.
        """
        per_min = float(self.config.rate_limit_msgs_per_minute)
        if per_min <= 0:
            return True

        state = self._rate
        now = time.monotonic()
        elapsed = max(0.0, now - state.last_refill)
        state.tokens = min(per_min, state.tokens + elapsed * per_min / 60.0)
        state.last_refill = now

        if state.tokens < cost:
            return False

        state.tokens -= cost
        return True

    def _write_loop(self) -> None:
        failed = False
        while True:
            line = self._outbox.get()
            if line is _CLOSE:
                break
            payload = encode(line)
            try:
                self.sock.sendall(payload)
            except OSError as e:
                failed = True
                self.stats.inc("write_errors")
                if self.state is not SessionState.CLOSED:
                    self.log.info(
                        "Write failed id=%s name=%r bytes=%s err=%s",
                        self.session_id,
                        self.name,
                        len(payload),
                        e,
                    )
                break
            self.stats.inc("bytes_out", len(payload))

        if failed:
            self.close()
        self._release_socket()

    def _release_socket(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.sock.close()
        except OSError:
            pass
        self._closed.set()

    def _fmt_peer(self) -> str:
        addr = self.address
        if isinstance(addr, tuple) and len(addr) >= 2:
            return f"{addr[0]}:{addr[1]}"
        return str(addr) if addr else "-"
