from __future__ import annotations

import os

from .codec import encode


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_username(value, max_chars: int = 0) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > int(max_chars):
        return None

    return s


def coerce_client_id(value) -> int | None:
    """Return an integer client id, or None if ``value`` cannot name one.

    Booleans are rejected; integral floats (``2.0``) are accepted since JSON
    does not distinguish them from integers.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def peer_ip(remote_address) -> str:
    if isinstance(remote_address, (tuple, list)) and remote_address:
        return str(remote_address[0])
    if remote_address is None:
        return "-"
    return str(remote_address)


def display_value(value) -> str:
    """Render a decoded JSON value for a human-readable message."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return encode(value)
