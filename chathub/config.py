from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import DEFAULT_PORT


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    server_name: str = "Server"
    name_max_chars: int = 32
    max_line_bytes: int = 64 * 1024
    rate_limit_msgs_per_minute: int = 0
    refresh_user_list: bool = False
    announce_departures: bool = True
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


_LOGGING_KEYS = {
    "level": "log_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

_INT_KEYS = ("port", "name_max_chars", "max_line_bytes", "rate_limit_msgs_per_minute")
_BOOL_KEYS = ("refresh_user_list", "announce_departures", "log_console")

_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0"})


def load_toml(path: str) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"{key} must be true or false, got {value!r}")


def apply_config_data(cfg: HubRuntimeConfig, data: dict[str, Any]) -> HubRuntimeConfig:
    """Overlay values from a parsed TOML document onto ``cfg``.

    Keys may live at the top level or under ``[hub]``; the ``[logging]`` table
    maps onto the ``log_*`` fields. Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return cfg

    hub = data.get("hub")
    if isinstance(hub, dict):
        data = {**data, **hub}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped = {
            field: log_table[key] for key, field in _LOGGING_KEYS.items() if key in log_table
        }
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where the config was loaded from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _INT_KEYS:
        if key in updates:
            updates[key] = int(updates[key])

    for key in _BOOL_KEYS:
        if key in updates:
            updates[key] = _as_bool(key, updates[key])

    for key in ("log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None

    return replace(cfg, **updates) if updates else cfg
