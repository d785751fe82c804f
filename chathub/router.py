from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .config import HubRuntimeConfig
from .constants import NAMEACCEPTED
from .messages import (
    Broadcast,
    DispatchRequest,
    Joined,
    Left,
    Private,
    Snapshot,
    render_broadcast,
    render_event,
    render_private,
)
from .registry import Registry
from .stats import StatsManager

if TYPE_CHECKING:
    from .session import Session


class MessageRouter:
    """
    Resolves dispatch requests and membership changes into target sessions.

    This class is responsible for:
    - Broadcast delivery to every admitted session, sender included
    - Private delivery to each named recipient that is online
    - Join, departure and full user list announcements

    The router keeps no state of its own. Targets are resolved and lines are
    queued on each session while ``registry.lock`` is held; queueing never
    blocks, the socket writes happen on each session's own writer thread.
    """

    def __init__(
        self,
        registry: Registry,
        *,
        config: HubRuntimeConfig | None = None,
        stats: StatsManager | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or HubRuntimeConfig()
        self.stats = stats or StatsManager()
        self.log = logging.getLogger("chathub.router")

    def dispatch(self, request: DispatchRequest) -> None:
        if isinstance(request, Broadcast):
            self.broadcast(request.sender, request.text)
        elif isinstance(request, Private):
            self.send_private(request.sender, request.recipients, request.text)
        else:
            raise TypeError(f"not a dispatch request: {request!r}")

    def broadcast(self, sender: str, text: str) -> int:
        """Deliver ``text`` from ``sender`` to every admitted session.

        Returns the number of sessions the line was queued on.
        """
        line = render_broadcast(sender, text)
        with self.registry.lock:
            delivered = self._deliver(self.registry.members(), line)

        self.stats.inc("broadcasts")
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Broadcast sender=%r recipients=%s chars=%s", sender, delivered, len(text)
            )
        return delivered

    def send_private(self, sender: str, recipients: tuple[str, ...], text: str) -> int:
        """Deliver ``text`` to each recipient that is online.

        Unknown names are skipped without telling the sender.
        """
        line = render_private(sender, text)
        delivered = 0
        unknown: list[str] = []

        with self.registry.lock:
            for name in recipients:
                target = self.registry.lookup(name)
                if target is None:
                    unknown.append(name)
                    continue
                delivered += self._deliver((target,), line)

        self.stats.inc("privates")
        if unknown:
            self.stats.inc("recipients_unknown", len(unknown))
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Private sender=%r delivered=%s unknown=%r chars=%s",
                sender,
                delivered,
                unknown,
                len(text),
            )
        return delivered

    def announce_joined(self, session: Session) -> None:
        """
        Greet a newly admitted session and tell everyone else about it.

        The joiner gets NAMEACCEPTED followed by a snapshot of the registry;
        every other admitted session gets USERJOINED.

        Must be called with ``registry.lock`` held, directly after the
        admission it announces.
        """
        name = session.name
        if name is None:
            raise ValueError("session has no admitted name")

        with self.registry.lock:
            session.send(NAMEACCEPTED)
            session.send(render_event(Snapshot(self.registry.snapshot())))

            joined = render_event(Joined(name))
            others = [s for s in self.registry.members() if s is not session]
            self._deliver(others, joined)

            if self.config.refresh_user_list:
                self.refresh_user_list(exclude=session)

        self.stats.inc("joins")

    def announce_left(self, name: str) -> None:
        """
        Tell the remaining sessions that ``name`` has gone.

        Must be called with ``registry.lock`` held, directly after the
        eviction it announces.
        """
        with self.registry.lock:
            remaining = self.registry.members()
            self._deliver(remaining, render_event(Left(name)))

            if self.config.announce_departures:
                notice = render_broadcast(
                    self.config.server_name, f"{name} has left the chat."
                )
                self._deliver(remaining, notice)

            if self.config.refresh_user_list:
                self.refresh_user_list()

        self.stats.inc("parts")

    def refresh_user_list(self, *, exclude: Session | None = None) -> None:
        """Send a full USERLIST to every admitted session."""
        with self.registry.lock:
            line = render_event(Snapshot(self.registry.snapshot()))
            targets = [s for s in self.registry.members() if s is not exclude]
            self._deliver(targets, line)

    def _deliver(self, targets, line: str) -> int:
        delivered = 0
        for target in targets:
            if target.send(line):
                delivered += 1
        if delivered:
            self.stats.inc("deliveries", delivered)
        return delivered
