from __future__ import annotations

from .constants import LINE_TERMINATOR


def encode(line: str) -> bytes:
    return (line + LINE_TERMINATOR).encode("utf-8")


def decode(b: bytes) -> str:
    return b.decode("utf-8", errors="replace").rstrip("\r\n")
