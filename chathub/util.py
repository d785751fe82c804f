from __future__ import annotations

import os

from .constants import NAME_LIST_SEP


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_name(value, *, max_chars: int = 0) -> str | None:
    """Validate a display name candidate, returning it unchanged or None.

    Names are case-sensitive and kept verbatim. Whitespace and the list
    separator are refused since both delimit names on the wire.
    """
    if not isinstance(value, str):
        return None

    if not value:
        return None

    if max_chars > 0 and len(value) > int(max_chars):
        return None

    if NAME_LIST_SEP in value:
        return None

    for ch in value:
        if ch.isspace() or not ch.isprintable():
            return None

    return value
