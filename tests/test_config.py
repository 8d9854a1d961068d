import logging

import pytest

from wsrelayd import cli
from wsrelayd.cli import _build_arg_parser, _write_default_config, build_config
from wsrelayd.config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from wsrelayd.logging_config import parse_level


def _args(*argv):
    return _build_arg_parser().parse_args(list(argv))


def test_default_config_file_matches_defaults(tmp_path) -> None:
    path = tmp_path / "wsrelayd.toml"
    _write_default_config(str(path))
    cfg = apply_config_data(RelayRuntimeConfig(), load_toml(str(path)))
    assert cfg == RelayRuntimeConfig()


def test_file_values_override_defaults(tmp_path) -> None:
    path = tmp_path / "relay.toml"
    path.write_text(
        '[relay]\nport = 8080\nheartbeat_interval_s = 5\ngreeting = "Hello"\n'
        'unknown_key = 1\n\n[logging]\nlevel = "DEBUG"\nfile = ""\n',
        encoding="utf-8",
    )
    cfg = apply_config_data(RelayRuntimeConfig(), load_toml(str(path)))
    assert cfg.port == 8080
    assert cfg.heartbeat_interval_s == 5.0
    assert isinstance(cfg.heartbeat_interval_s, float)
    assert cfg.greeting == "Hello"
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None


def test_config_path_cannot_be_overridden_by_file() -> None:
    base = RelayRuntimeConfig(config_path="/etc/wsrelayd.toml")
    cfg = apply_config_data(base, {"config_path": "/tmp/other.toml"})
    assert cfg.config_path == "/etc/wsrelayd.toml"


def test_port_precedence(tmp_path) -> None:
    path = tmp_path / "relay.toml"
    path.write_text("[relay]\nport = 8080\n", encoding="utf-8")

    cfg = build_config(_args("--config", str(path)), environ={})
    assert cfg.port == 8080

    cfg = build_config(_args("--config", str(path)), environ={"PORT": "4000"})
    assert cfg.port == 4000

    cfg = build_config(_args("--config", str(path), "--port", "5000"), environ={"PORT": "4000"})
    assert cfg.port == 5000


def test_missing_config_file_uses_defaults(tmp_path) -> None:
    cfg = build_config(_args("--config", str(tmp_path / "absent.toml")), environ={})
    assert cfg.port == 3000
    assert cfg.heartbeat_interval_s == 30.0


def test_invalid_port_rejected(tmp_path) -> None:
    args = _args("--config", str(tmp_path / "absent.toml"))
    with pytest.raises(ValueError):
        build_config(args, environ={"PORT": "http"})
    with pytest.raises(ValueError):
        validate_config(RelayRuntimeConfig(port=70000))


def test_cli_flags_applied(tmp_path) -> None:
    cfg = build_config(
        _args(
            "--config",
            str(tmp_path / "absent.toml"),
            "--heartbeat-interval",
            "0",
            "--username-max-chars",
            "16",
            "--log-file",
            "",
        ),
        environ={},
    )
    assert cfg.heartbeat_interval_s == 0.0
    assert cfg.username_max_chars == 16
    assert cfg.log_file is None


def test_parse_level() -> None:
    assert parse_level("debug", logging.INFO) == logging.DEBUG
    assert parse_level("WARN", logging.INFO) == logging.WARNING
    assert parse_level("15", logging.INFO) == 15
    assert parse_level("", logging.INFO) == logging.INFO
    assert parse_level("nonsense", logging.ERROR) == logging.ERROR


def test_first_run_writes_config_and_still_serves(tmp_path, monkeypatch) -> None:
    started = []

    class Service:
        def __init__(self, cfg) -> None:
            self.cfg = cfg

        def start(self) -> None:
            started.append(self.cfg)

        def run_forever(self) -> None:
            pass

    monkeypatch.setattr(cli, "RelayService", Service)
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **kw: None)
    monkeypatch.setenv("PORT", "4567")

    path = tmp_path / "fresh" / "wsrelayd.toml"
    cli.main(["--config", str(path)])

    assert path.exists()
    [cfg] = started
    assert cfg.port == 4567
    assert cfg.config_path == str(path)
