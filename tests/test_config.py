import logging

import pytest

from chathub.cli import (
    _build_arg_parser,
    _ensure_default_config,
    _write_default_config,
    build_config,
)
from chathub.config import HubRuntimeConfig, apply_config_data, load_toml
from chathub.logging_config import _parse_level, configure_logging


def test_apply_config_reads_hub_and_logging_tables() -> None:
    data = {
        "hub": {"port": "9100", "server_name": "Lobby", "refresh_user_list": True},
        "logging": {"level": "DEBUG", "file": ""},
        "unknown_key": 1,
    }
    cfg = apply_config_data(HubRuntimeConfig(), data)
    assert cfg.port == 9100
    assert cfg.server_name == "Lobby"
    assert cfg.refresh_user_list is True
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None


def test_apply_config_does_not_override_config_path() -> None:
    cfg = HubRuntimeConfig(config_path="/etc/chathub.toml")
    cfg = apply_config_data(cfg, {"config_path": "/tmp/other.toml"})
    assert cfg.config_path == "/etc/chathub.toml"


def test_default_config_file_loads(tmp_path) -> None:
    path = tmp_path / "sub" / "chathub.toml"
    _write_default_config(str(path))
    cfg = apply_config_data(HubRuntimeConfig(), load_toml(str(path)))
    assert cfg == HubRuntimeConfig()


def test_cli_flags_override_file(tmp_path) -> None:
    path = tmp_path / "chathub.toml"
    path.write_text('[hub]\nport = 7000\nhost = "127.0.0.1"\n', encoding="utf-8")

    args = _build_arg_parser().parse_args(
        [
            "--config",
            str(path),
            "--port",
            "7001",
            "--no-departure-notice",
            "--rate-limit-msgs-per-minute",
            "60",
        ]
    )
    cfg = build_config(args)
    assert cfg.config_path == str(path)
    assert cfg.host == "127.0.0.1"
    assert cfg.port == 7001
    assert cfg.announce_departures is False
    assert cfg.rate_limit_msgs_per_minute == 60


def test_invalid_port_in_file_raises(tmp_path) -> None:
    path = tmp_path / "chathub.toml"
    path.write_text('port = "nope"\n', encoding="utf-8")
    args = _build_arg_parser().parse_args(["--config", str(path)])
    with pytest.raises(ValueError):
        build_config(args)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("debug", logging.DEBUG),
        ("WARN", logging.WARNING),
        ("15", 15),
        ("", logging.INFO),
        (None, logging.INFO),
        ("bogus", logging.INFO),
    ],
)
def test_parse_level(value, expected) -> None:
    assert _parse_level(value, logging.INFO) == expected


def test_apply_config_coerces_boolean_strings() -> None:
    data = {
        "hub": {"refresh_user_list": "false", "announce_departures": "no"},
        "logging": {"console": "off"},
    }
    cfg = apply_config_data(HubRuntimeConfig(refresh_user_list=True), data)
    assert cfg.refresh_user_list is False
    assert cfg.announce_departures is False
    assert cfg.log_console is False

    cfg = apply_config_data(HubRuntimeConfig(), {"refresh_user_list": "True"})
    assert cfg.refresh_user_list is True


@pytest.mark.parametrize("value", ["maybe", 2, 1.5, [], None])
def test_apply_config_rejects_non_boolean(value) -> None:
    with pytest.raises(ValueError):
        apply_config_data(HubRuntimeConfig(), {"hub": {"announce_departures": value}})


def test_empty_config_path_uses_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert _ensure_default_config("") is False
    assert list(tmp_path.iterdir()) == []

    args = _build_arg_parser().parse_args(["--config", "", "--port", "7002"])
    cfg = build_config(args)
    assert cfg.config_path is None
    assert cfg.port == 7002


def test_default_config_written_once(tmp_path) -> None:
    path = tmp_path / "chathub.toml"
    assert _ensure_default_config(str(path)) is True
    path.write_text("port = 7003\n", encoding="utf-8")
    assert _ensure_default_config(str(path)) is False
    assert path.read_text(encoding="utf-8") == "port = 7003\n"


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    for h in handlers:
        root.removeHandler(h)
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_configure_logging_writes_file(tmp_path, restore_root_logging) -> None:
    log_path = tmp_path / "logs" / "chathub.log"
    cfg = HubRuntimeConfig(log_console=False, log_format="%(levelname)s %(message)s")

    configure_logging(cfg, override_level="debug", override_file=str(log_path))
    logging.getLogger("chathub.test").debug("hello %s", "file")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    root.handlers[0].flush()
    assert log_path.read_text(encoding="utf-8") == "DEBUG hello file\n"
