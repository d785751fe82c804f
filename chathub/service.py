from __future__ import annotations

import errno
import itertools
import logging
import signal
import socket
import threading
import time

from . import __version__
from .config import HubRuntimeConfig
from .registry import Registry
from .router import MessageRouter
from .session import Session
from .stats import StatsManager

# accept() failures that say nothing about the health of the listener.
_TRANSIENT_ACCEPT_ERRNOS = frozenset(
    {
        errno.ECONNABORTED,
        errno.EINTR,
        errno.EAGAIN,
        errno.EWOULDBLOCK,
        errno.EPROTO,
        errno.EMFILE,
        errno.ENFILE,
        errno.ENOBUFS,
        errno.ENOMEM,
    }
)
_RESOURCE_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM})


class HubService:
    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("chathub.hub")

        self.stats = StatsManager()
        self.registry = Registry()
        self.router = MessageRouter(self.registry, config=config, stats=self.stats)

        self._shutdown = threading.Event()
        self._stopped = False
        self._stop_lock = threading.Lock()

        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None

        # Every connected session, admitted or not, so stop() can reach them.
        self._sessions: set[Session] = set()
        self._sessions_lock = threading.Lock()
        self._ids = itertools.count(1)

        self.fatal_error: BaseException | None = None

    @property
    def address(self) -> tuple[str, int]:
        if self._listener is None:
            raise RuntimeError("hub is not listening")
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self) -> None:
        """Bind the listener and start accepting. Bind errors propagate."""
        self.stats.set_start_time()

        self._listener = socket.create_server((self.config.host, int(self.config.port)))
        # Lets the accept loop notice stop() without relying on close() waking accept().
        self._listener.settimeout(0.5)

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="chathub-accept", daemon=True
        )
        self._accept_thread.start()

        host, port = self.address
        self.log.info("chathub %s listening host=%s port=%s", __version__, host, port)
        self.log.info(
            "Policy name_max_chars=%s max_line_bytes=%s rate_limit_msgs_per_minute=%s "
            "refresh_user_list=%s announce_departures=%s",
            self.config.name_max_chars,
            self.config.max_line_bytes,
            self.config.rate_limit_msgs_per_minute,
            self.config.refresh_user_list,
            self.config.announce_departures,
        )

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
        self._shutdown.set()

        if self._listener is not None:
            try:
                self._listener.close()
            except OSError:
                pass

        with self._sessions_lock:
            sessions = list(self._sessions)

        for sess in sessions:
            sess.close()

        self.log.info("Hub stopped\n%s", self.stats.format_stats(online=len(self.registry)))

    def session_count(self) -> int:
        with self._sessions_lock:
            return len(self._sessions)

    def _accept_loop(self) -> None:
        listener = self._listener
        assert listener is not None

        while not self._shutdown.is_set():
            try:
                conn, addr = listener.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if self._shutdown.is_set():
                    break
                if e.errno in _TRANSIENT_ACCEPT_ERRNOS:
                    self.log.warning("Accept failed (transient) err=%s", e)
                    if e.errno in _RESOURCE_ERRNOS:
                        time.sleep(0.1)
                    continue
                self.log.exception("Accept failed; stopping hub")
                self.fatal_error = e
                self.stop()
                break

            if self._shutdown.is_set():
                conn.close()
                break

            conn.settimeout(None)
            self._spawn_session(conn, addr)

    def _spawn_session(self, conn: socket.socket, addr) -> None:
        session_id = next(self._ids)
        sess = Session(
            conn,
            addr,
            registry=self.registry,
            router=self.router,
            config=self.config,
            stats=self.stats,
            session_id=session_id,
        )
        with self._sessions_lock:
            self._sessions.add(sess)
        self.stats.inc("connections")

        threading.Thread(
            target=self._run_session,
            args=(sess,),
            name=f"chathub-session-{session_id}",
            daemon=True,
        ).start()

    def _run_session(self, sess: Session) -> None:
        try:
            sess.run()
        except Exception:
            self.log.exception("Session crashed id=%s name=%r", sess.session_id, sess.name)
            sess.close()
        finally:
            with self._sessions_lock:
                self._sessions.discard(sess)
