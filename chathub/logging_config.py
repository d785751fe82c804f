from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import HubRuntimeConfig

_FALLBACK_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_level(value: Any, default: int) -> int:
    """Level from a name ("debug", "WARN") or a number; ``default`` if unusable."""
    if isinstance(value, int):
        return value
    text = "" if value is None else str(value).strip()
    if not text:
        return default

    known = logging.getLevelNamesMapping()
    if text.upper() in known:
        return known[text.upper()]
    if text.isdigit():
        return int(text)
    return default


def _blank_to_none(value: Any) -> str | None:
    if value is None or not str(value).strip():
        return None
    return str(value)


def _open_log_file(path: str) -> logging.Handler:
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target, encoding="utf-8")
    try:
        # Logs carry peer addresses and names.
        target.chmod(0o600)
    except OSError:
        pass
    return handler


def _build_handlers(cfg: HubRuntimeConfig, log_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(_open_log_file(log_file))

    formatter = logging.Formatter(
        fmt=str(cfg.log_format).strip() or _FALLBACK_FORMAT,
        datefmt=_blank_to_none(cfg.log_datefmt),
    )
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logging(
    cfg: HubRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install chathub's handlers on the root logger.

    ``override_file`` takes precedence over ``cfg.log_file`` unless it is
    blank. Calling this again swaps out (and closes) the handlers it
    installed before.
    """
    log_file = _blank_to_none(override_file) or _blank_to_none(cfg.log_file)
    handlers = _build_handlers(cfg, log_file)

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    for handler in handlers:
        root.addHandler(handler)

    root.setLevel(_parse_level(override_level or cfg.log_level, logging.INFO))
    logging.captureWarnings(True)
