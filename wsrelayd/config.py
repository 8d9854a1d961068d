from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import (
    DEFAULT_GREETING,
    DEFAULT_HEARTBEAT_INTERVAL_S,
    DEFAULT_PORT,
    DEFAULT_USERNAME_PREFIX,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    heartbeat_interval_s: float = DEFAULT_HEARTBEAT_INTERVAL_S
    greeting: str = DEFAULT_GREETING
    username_prefix: str = DEFAULT_USERNAME_PREFIX
    username_max_chars: int = 0
    max_message_bytes: int = 1024 * 1024  # 1 MiB, the websockets default
    send_queue_size: int = 256
    close_timeout_s: float = 10.0
    log_level: str = "INFO"
    log_ws_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "ws_level", "console", "file", "format", "datefmt"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    for int_key in ("port", "username_max_chars", "max_message_bytes", "send_queue_size"):
        if int_key in updates:
            updates[int_key] = int(updates[int_key])
    for float_key in ("heartbeat_interval_s", "close_timeout_s"):
        if float_key in updates:
            updates[float_key] = float(updates[float_key])

    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None

    return replace(base, **updates) if updates else base


def validate_config(cfg: RelayRuntimeConfig) -> None:
    if not (0 <= int(cfg.port) <= 65535):
        raise ValueError(f"port out of range: {cfg.port}")
    if float(cfg.heartbeat_interval_s) < 0:
        raise ValueError("heartbeat_interval_s must not be negative")
    if int(cfg.send_queue_size) < 1:
        raise ValueError("send_queue_size must be at least 1")
    if not str(cfg.username_prefix):
        raise ValueError("username_prefix must not be empty")
