"""Server-initiated liveness probing and eviction of dead connections."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .registry import Handle

if TYPE_CHECKING:
    from .broadcast import Outgoing
    from .service import RelayService


class LivenessMonitor:
    """
    Periodic probe/evict cycle over every registered connection.

    Each connection is either ``alive`` or pending a check (``alive`` False).
    On every tick, connections still pending from the previous tick are
    evicted; the rest are marked pending and probed. A probe acknowledgment
    marks the connection alive again at any time.

    This is separate from the application-level ``ping`` message, which never
    changes liveness state.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("wsrelayd.liveness")
        self._thread: threading.Thread | None = None

    @property
    def interval_s(self) -> float:
        return float(self.hub.config.heartbeat_interval_s)

    def start(self) -> None:
        if self.interval_s <= 0:
            self.log.info("Liveness probing disabled")
            return
        if self._thread is not None and self._thread.is_alive():
            return

        self._thread = threading.Thread(
            target=self._loop, name="wsrelayd-liveness", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Wait for the loop to exit. The caller sets the shutdown event first."""
        t = self._thread
        if t is None or t is threading.current_thread():
            return
        t.join(timeout)
        self._thread = None

    def _loop(self) -> None:
        while not self.hub._shutdown.wait(self.interval_s):
            try:
                self.tick()
            except Exception:
                self.log.exception("Liveness tick failed")

    def tick(self) -> tuple[list[Handle], list[Handle]]:
        """Run one probe/evict cycle; returns (evicted, probed) handles."""
        to_evict: list[Handle] = []
        to_probe: list[Handle] = []
        outgoing: Outgoing = []

        with self.hub._state_lock:
            if self.hub._shutdown.is_set():
                return to_evict, to_probe

            for handle, rec in self.hub.registry.items():
                if not rec.alive:
                    to_evict.append(handle)
                    continue
                rec.alive = False
                to_probe.append(handle)

            for handle in to_evict:
                self.hub.remove_connection_locked(handle, outgoing, reason="timeout")
                self.hub.stats.inc("evictions")

        for handle in to_evict:
            self.log.info("Terminating inactive conn=%s", self.hub.fmt_handle(handle))
            try:
                self.hub.transport.terminate(handle)
            except Exception:
                self.log.warning(
                    "Terminate failed conn=%s", self.hub.fmt_handle(handle), exc_info=True
                )

        self.hub.broadcaster.flush(outgoing)

        for handle in to_probe:
            try:
                sent = self.hub.transport.probe(handle)
            except Exception:
                self.log.debug(
                    "Probe failed conn=%s", self.hub.fmt_handle(handle), exc_info=True
                )
                sent = False
            if sent:
                self.hub.stats.inc("probes_out")

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Liveness tick evicted=%d probed=%d", len(to_evict), len(to_probe)
            )
        return to_evict, to_probe

    def on_ack(self, handle: Handle) -> None:
        with self.hub._state_lock:
            if self.hub.registry.mark_alive(handle):
                self.hub.stats.inc("probe_acks")
