from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig

_FALLBACK_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"

    level = logging.getLevelNamesMapping().get(text)
    if level is not None:
        return level

    try:
        return int(text)
    except ValueError:
        return default


def _file_handler(path: str) -> logging.Handler:
    p = Path(os.path.expanduser(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Configure Python logging for wsrelayd.

    Replaces any handlers already on the root logger, so calling this twice
    does not duplicate output. ``override_file=""`` disables file logging even
    when the config names a file.
    """

    level = parse_level(override_level or cfg.log_level, logging.INFO)
    ws_level = parse_level(cfg.log_ws_level, logging.WARNING)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    log_file = override_file if override_file is not None else cfg.log_file
    if log_file and str(log_file).strip():
        handlers.append(_file_handler(str(log_file)))

    fmt = str(cfg.log_format or "").strip() or _FALLBACK_FORMAT
    datefmt = cfg.log_datefmt or None
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level)

    # Library loggers
    logging.getLogger("websockets").setLevel(ws_level)

    logging.captureWarnings(True)
