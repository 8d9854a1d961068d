from __future__ import annotations

from datetime import datetime, timezone

from .codec import decode
from .constants import K_ACK, K_TIMESTAMP, K_TYPE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_ts(dt: datetime | None = None) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision and a Z suffix."""
    if dt is None:
        dt = utcnow()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_envelope(
    msg_type: str,
    body: dict | None = None,
    *,
    ts: datetime | None = None,
) -> dict:
    env: dict[str, object] = {K_TYPE: str(msg_type)}
    if body:
        for k, v in body.items():
            if k in (K_TYPE, K_TIMESTAMP):
                continue
            env[k] = v
    env[K_TIMESTAMP] = iso_ts(ts)
    return env


def with_ack(env: dict) -> dict:
    return {**env, K_ACK: True}


def decode_inbound(data: str | bytes):
    """Decode an inbound payload.

    Any JSON value is accepted except ``null``. Raises ValueError when the
    payload is not JSON text.
    """
    value = decode(data)
    if value is None:
        raise ValueError("message must not be null")
    return value


def message_type(value) -> str | None:
    """Return the routable ``type`` of a decoded message, or None."""
    if not isinstance(value, dict):
        return None
    t = value.get(K_TYPE)
    if not isinstance(t, str):
        return None
    return t
