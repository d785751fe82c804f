"""Membership events, dispatch requests and their line representations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .constants import (
    CMD_BROADCAST,
    CMD_PRIVATE,
    MESSAGE,
    NAME_LIST_SEP,
    PRIVATE_TAG,
    USERJOINED,
    USERLEFT,
    USERLIST,
)


@dataclass(frozen=True)
class Joined:
    name: str


@dataclass(frozen=True)
class Left:
    name: str


@dataclass(frozen=True)
class Snapshot:
    names: tuple[str, ...]


MembershipEvent = Union[Joined, Left, Snapshot]


@dataclass(frozen=True)
class Broadcast:
    sender: str
    text: str


@dataclass(frozen=True)
class Private:
    sender: str
    recipients: tuple[str, ...]
    text: str


DispatchRequest = Union[Broadcast, Private]


def parse_request(sender: str, line: str) -> DispatchRequest | None:
    """
    Turn one inbound line from an Active session into a dispatch request.

    Returns None for anything that is not a well-formed command; callers drop
    those lines without replying.
    """
    if line.startswith(CMD_BROADCAST):
        return Broadcast(sender, line[len(CMD_BROADCAST):])

    if line.startswith(CMD_PRIVATE):
        rest = line[len(CMD_PRIVATE):]
        sep = rest.find(" ")
        if sep == -1:
            return None
        # Repeated names collapse to a single delivery; order is kept.
        recipients = tuple(
            dict.fromkeys(r for r in rest[:sep].split(NAME_LIST_SEP) if r)
        )
        if not recipients:
            return None
        return Private(sender, recipients, rest[sep + 1:])

    return None


def render_event(event: MembershipEvent) -> str:
    if isinstance(event, Joined):
        return f"{USERJOINED} {event.name}"
    if isinstance(event, Left):
        return f"{USERLEFT} {event.name}"
    if isinstance(event, Snapshot):
        return f"{USERLIST} {NAME_LIST_SEP.join(event.names)}"
    raise TypeError(f"not a membership event: {event!r}")


def render_broadcast(sender: str, text: str) -> str:
    return f"{MESSAGE} {sender}: {text}"


def render_private(sender: str, text: str) -> str:
    return f"{MESSAGE} {PRIVATE_TAG} {sender}: {text}"
