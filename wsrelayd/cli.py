from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import RelayService
from .util import expand_path


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    d = RelayRuntimeConfig()
    content = f"""# wsrelayd configuration (TOML)
#
# This file was created on first run with the defaults below.
# Edit it and restart wsrelayd to apply changes.

[relay]

# Listen address. The PORT environment variable overrides 'port'.
host = {d.host!r}
port = {d.port}

# Liveness probing (WebSocket ping frames). A connection that has not answered
# the previous probe when the next one is due is disconnected. 0 disables.
heartbeat_interval_s = {d.heartbeat_interval_s}

# Text of the welcome message; the client id is appended.
greeting = {d.greeting!r}

# Default display names are <username_prefix><client id>.
username_prefix = {d.username_prefix!r}

# Maximum accepted username length (characters). 0 disables length limiting.
username_max_chars = {d.username_max_chars}

# Limits.
#
# max_message_bytes: largest inbound frame accepted.
# send_queue_size: messages buffered per connection before a slow client is
# disconnected.
# close_timeout_s: how long a closing handshake may take on shutdown.
max_message_bytes = {d.max_message_bytes}
send_queue_size = {d.send_queue_size}
close_timeout_s = {d.close_timeout_s}

[logging]

# Log level for wsrelayd itself.
level = "INFO"

# Log level for the websockets library.
ws_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = {d.log_format!r}
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str) -> bool:
    if os.path.exists(config_path):
        return False
    _write_default_config(config_path)
    return True


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="wsrelayd", description="Run a WebSocket relay server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 3000)")

    p.add_argument(
        "--heartbeat-interval",
        type=float,
        default=None,
        help="Liveness probe interval seconds (0 disables)",
    )
    p.add_argument("--greeting", default=None, help="Welcome message text")
    p.add_argument(
        "--username-max-chars",
        type=int,
        default=None,
        help="Maximum username length (0 disables)",
    )
    p.add_argument(
        "--send-queue-size",
        type=int,
        default=None,
        help="Per-connection outbound buffer size",
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


def build_config(
    args: argparse.Namespace, environ: dict[str, str] | None = None
) -> RelayRuntimeConfig:
    """Merge defaults, the config file, $PORT and command line flags, in that order."""
    env = os.environ if environ is None else environ
    config_path = expand_path(str(args.config))

    cfg = RelayRuntimeConfig(config_path=config_path)
    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    port_env = str(env.get("PORT", "")).strip()
    if port_env:
        try:
            cfg = replace(cfg, port=int(port_env))
        except ValueError as e:
            raise ValueError(f"invalid PORT {port_env!r}") from e

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.heartbeat_interval is not None:
        cfg = replace(cfg, heartbeat_interval_s=float(args.heartbeat_interval))
    if args.greeting is not None:
        cfg = replace(cfg, greeting=str(args.greeting))
    if args.username_max_chars is not None:
        cfg = replace(cfg, username_max_chars=int(args.username_max_chars))
    if args.send_queue_size is not None:
        cfg = replace(cfg, send_queue_size=int(args.send_queue_size))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    validate_config(cfg)
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = expand_path(str(args.config))
    created = _ensure_first_run_files(config_path)

    try:
        cfg = build_config(args)
    except (OSError, ValueError) as e:
        print(f"wsrelayd: configuration error: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)
    if created:
        logging.getLogger("wsrelayd").info("Created default config at %s", config_path)

    svc = RelayService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
