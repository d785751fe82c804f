from __future__ import annotations

import argparse
import logging
import os
import sys
import tomllib
from dataclasses import replace
from pathlib import Path

from .config import HubRuntimeConfig, apply_config_data, load_toml
from .constants import DEFAULT_PORT
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import HubService
from .util import expand_path


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# chathub configuration (TOML)
#
# This file was created on first run. Values given on the command line
# take precedence over the ones below.

[hub]

# Listening endpoint.
host = "0.0.0.0"
port = {DEFAULT_PORT}

# Sender name used for hub-generated chat lines (e.g. departure notices).
server_name = "Server"

# Maximum accepted display name length (characters). 0 disables the limit.
name_max_chars = 32

# Inbound lines longer than this many bytes are discarded. 0 disables the limit.
max_line_bytes = 65536

# Per-connection message rate limit. 0 disables rate limiting.
rate_limit_msgs_per_minute = 0

# Send a full USERLIST to everyone whenever membership changes, in addition
# to the USERJOINED / USERLEFT announcements.
refresh_user_list = false

# Send "<name> has left the chat." to remaining users when someone leaves.
announce_departures = true

[logging]

# Log level for chathub itself.
level = "INFO"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_default_config(config_path: str) -> bool:
    """Write the first-run config file if it is missing. Returns True if written."""
    if not config_path or os.path.exists(config_path):
        return False
    _write_default_config(config_path)
    return True


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chathub", description="Run a chathub server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run; empty for built-in defaults only)",
    )

    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument(
        "--port", type=int, default=None, help=f"Listen port (default: {DEFAULT_PORT})"
    )
    p.add_argument(
        "--server-name",
        default=None,
        help="Sender name for hub-generated messages (default: Server)",
    )

    p.add_argument(
        "--name-max-chars",
        type=int,
        default=None,
        help="Maximum display name length (0 disables)",
    )
    p.add_argument(
        "--max-line-bytes",
        type=int,
        default=None,
        help="Maximum inbound line size in bytes (0 disables)",
    )
    p.add_argument(
        "--rate-limit-msgs-per-minute",
        type=int,
        default=None,
        help="Per-connection message rate limit (0 disables)",
    )

    p.add_argument(
        "--refresh-user-list",
        action="store_true",
        help="Send a full USERLIST to everyone on every membership change",
    )
    p.add_argument(
        "--no-departure-notice",
        action="store_true",
        help="Do not send a chat line when a user leaves (USERLEFT is still sent)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> HubRuntimeConfig:
    config_path = expand_path(str(args.config)) if args.config else None
    cfg = HubRuntimeConfig(config_path=config_path)

    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.server_name is not None:
        cfg = replace(cfg, server_name=str(args.server_name))

    if args.name_max_chars is not None:
        cfg = replace(cfg, name_max_chars=int(args.name_max_chars))
    if args.max_line_bytes is not None:
        cfg = replace(cfg, max_line_bytes=int(args.max_line_bytes))
    if args.rate_limit_msgs_per_minute is not None:
        cfg = replace(
            cfg, rate_limit_msgs_per_minute=int(args.rate_limit_msgs_per_minute)
        )

    if args.refresh_user_list:
        cfg = replace(cfg, refresh_user_list=True)
    if args.no_departure_notice:
        cfg = replace(cfg, announce_departures=False)

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = expand_path(str(args.config)) if args.config else ""
    if _ensure_default_config(config_path):
        print(f"Created default chathub config: {config_path}", file=sys.stderr)

    try:
        cfg = build_config(args)
    except (OSError, tomllib.TOMLDecodeError, TypeError, ValueError) as e:
        print(f"chathub: invalid config {config_path or '-'}: {e}", file=sys.stderr)
        raise SystemExit(2)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)
    log = logging.getLogger("chathub.hub")

    svc = HubService(cfg)
    try:
        svc.start()
    except OSError as e:
        log.error("Cannot listen on %s:%s: %s", cfg.host, cfg.port, e)
        raise SystemExit(1)

    svc.run_forever()

    if svc.fatal_error is not None:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
