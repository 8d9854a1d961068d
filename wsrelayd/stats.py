"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


COUNTER_KEYS = (
    "connections",
    "disconnections",
    "msgs_in",
    "msgs_bad",
    "bytes_in",
    "bytes_out",
    "send_failures",
    "errors_sent",
    "chats_forwarded",
    "private_messages",
    "renames",
    "user_lists",
    "pings_in",
    "echoes",
    "probes_out",
    "probe_acks",
    "evictions",
)


class StatsManager:
    """
    Lifetime counters for the relay.

    Tracks connection churn, message and byte volume, send failures, and
    liveness probe activity. Counters only ever increase after startup.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = dict.fromkeys(COUNTER_KEYS, 0)

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self.hub._state_lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self.hub._state_lock:
            return int(self._counters.get(key, 0))

    def counters(self) -> dict[str, int]:
        with self.hub._state_lock:
            return dict(self._counters)

    def uptime_s(self) -> float:
        if self.started_monotonic is None:
            return 0.0
        return time.monotonic() - self.started_monotonic

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        with self.hub._state_lock:
            reg = self.hub.registry.get_stats()
            c = dict(self._counters)

        cfg = self.hub.config
        lines = [
            f"wsrelayd {__version__} stats",
            f"uptime_s={self.uptime_s():.1f}",
            f"clients={reg['total']} pending_check={reg['pending_check']} "
            f"next_id={reg['next_id']}",
            f"config: port={cfg.port} heartbeat_interval_s={cfg.heartbeat_interval_s} "
            f"send_queue_size={cfg.send_queue_size}",
            "lifecycle: connections={} disconnections={} evictions={}".format(
                c["connections"], c["disconnections"], c["evictions"]
            ),
            "io: msgs_in={} msgs_bad={} bytes_in={} bytes_out={} send_failures={}".format(
                c["msgs_in"], c["msgs_bad"], c["bytes_in"], c["bytes_out"], c["send_failures"]
            ),
            "events: chats={} private={} renames={} user_lists={} pings={} echoes={} "
            "errors_sent={}".format(
                c["chats_forwarded"],
                c["private_messages"],
                c["renames"],
                c["user_lists"],
                c["pings_in"],
                c["echoes"],
                c["errors_sent"],
            ),
            "liveness: probes_out={} probe_acks={}".format(
                c["probes_out"], c["probe_acks"]
            ),
        ]
        return "\n".join(lines) + "\n"
