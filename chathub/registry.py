from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import Session


class Registry:
    """
    Process-wide map of admitted display names to their sessions.

    This class is responsible for:
    - Name uniqueness (atomic check-and-insert on admission)
    - Eviction when a session closes
    - Point-in-time views of who is online

    Every read and write goes through ``lock``. The lock is re-entrant so a
    caller can hold it across an admission or eviction and the membership
    announcement derived from it, making the pair a single critical section.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("chathub.registry")
        self.lock = threading.RLock()
        self._sessions: dict[str, Session] = {}

    def try_admit(self, name: str, session: Session) -> bool:
        """Claim ``name`` for ``session``. Returns False, changing nothing, if
        the name is empty or already held."""
        if not name:
            return False
        with self.lock:
            if name in self._sessions:
                return False
            self._sessions[name] = session
        self.log.debug("Admitted name=%r", name)
        return True

    def evict(self, name: str, session: Session | None = None) -> bool:
        """
        Remove ``name`` if present. Absent names are a no-op.

        If ``session`` is given, the mapping is only removed while it still
        belongs to that session.
        """
        with self.lock:
            current = self._sessions.get(name)
            if current is None:
                return False
            if session is not None and current is not session:
                return False
            del self._sessions[name]
        self.log.debug("Evicted name=%r", name)
        return True

    def snapshot(self) -> tuple[str, ...]:
        """Names currently admitted, in admission order."""
        with self.lock:
            return tuple(self._sessions)

    def lookup(self, name: str) -> Session | None:
        with self.lock:
            return self._sessions.get(name)

    def members(self) -> list[Session]:
        with self.lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self.lock:
            return len(self._sessions)

    def __contains__(self, name: object) -> bool:
        with self.lock:
            return name in self._sessions
