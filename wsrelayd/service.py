from __future__ import annotations

import logging
import signal
import threading
import time
from typing import Any

from . import __version__
from .broadcast import Broadcaster, Outgoing
from .config import RelayRuntimeConfig
from .constants import (
    B_CLIENT_ID,
    CLOSE_GOING_AWAY,
    K_MESSAGE,
    T_ERROR,
    T_USER_JOINED,
    T_USER_LEFT,
    T_WELCOME,
)
from .envelope import make_envelope, utcnow
from .liveness import LivenessMonitor
from .registry import ConnectionRecord, Handle, Registry
from .router import MessageRouter
from .stats import StatsManager


class RelayService:
    def __init__(self, config: RelayRuntimeConfig, transport: Any = None) -> None:
        self.config = config
        self.log = logging.getLogger("wsrelayd.hub")

        # The registry is touched from every connection's handler thread, the
        # liveness thread and the signal handler. Guard it, the id counter and
        # the stats counters with a single re-entrant lock. Network writes
        # happen after the lock is released.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()
        self._started = False
        self._stopped = False

        self.registry = Registry(config.username_prefix)
        self.stats = StatsManager(self)
        self.broadcaster = Broadcaster(self)
        self.router = MessageRouter(self)
        self.monitor = LivenessMonitor(self)

        if transport is None:
            from .transport import WebSocketTransport

            transport = WebSocketTransport(self, config)
        self.transport = transport

    def fmt_handle(self, handle: Handle) -> str:
        rec = self.registry.lookup_by_handle(handle)
        if rec is not None:
            return f"#{rec.id}"
        cid = getattr(handle, "id", None)
        return str(cid) if cid is not None else "-"

    def start(self) -> None:
        self.log.info("Starting wsrelayd %s", __version__)
        self.stats.set_start_time()
        self.transport.start()
        self.monitor.start()
        self._started = True
        self.log.info(
            "Policy heartbeat_interval_s=%s send_queue_size=%s max_message_bytes=%s "
            "username_max_chars=%s",
            self.config.heartbeat_interval_s,
            self.config.send_queue_size,
            self.config.max_message_bytes,
            self.config.username_max_chars,
        )

    def run_forever(self) -> None:
        if not self._started:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True

        self.log.info("Shutting down")
        self._shutdown.set()
        self.monitor.stop()

        with self._state_lock:
            handles = self.registry.clear_all()

        for handle in handles:
            try:
                self.transport.close(handle, CLOSE_GOING_AWAY, "server shutting down")
            except Exception:
                self.log.debug(
                    "Close failed conn=%s", self.fmt_handle(handle), exc_info=True
                )

        if handles and not self.transport.wait_closed(float(self.config.close_timeout_s)):
            self.log.warning("Some connections did not close within %ss", self.config.close_timeout_s)

        self.transport.shutdown()

        for line in self.stats.format_stats().splitlines():
            self.log.info("%s", line)
        self.log.info("Server closed")

    # Transport events

    def on_connect(self, handle: Handle, peer_address: str) -> int | None:
        outgoing: Outgoing = []
        now = utcnow()

        with self._state_lock:
            if self._shutdown.is_set():
                client_id = None
            else:
                client_id = self.registry.register(handle, peer_address, now)
                rec = self.registry.lookup_by_handle(handle)
                self.stats.inc("connections")

                self.broadcaster.send_to(
                    outgoing,
                    handle,
                    make_envelope(
                        T_WELCOME,
                        {
                            K_MESSAGE: f"{self.config.greeting} Your ID: {client_id}",
                            B_CLIENT_ID: client_id,
                        },
                    ),
                )
                self.broadcaster.broadcast_except(
                    outgoing,
                    make_envelope(
                        T_USER_JOINED,
                        {
                            K_MESSAGE: f"{rec.username} joined the chat",
                            B_CLIENT_ID: client_id,
                        },
                    ),
                    exclude=handle,
                )

        if client_id is None:
            self.transport.close(handle, CLOSE_GOING_AWAY, "server shutting down")
            return None

        self.log.info("Client %s connected from %s", client_id, peer_address)
        self.broadcaster.flush(outgoing)
        return client_id

    def on_message(self, handle: Handle, data: str | bytes) -> None:
        # Keep state mutations under the shared lock, but do not hold it while
        # handing payloads to the transport.
        outgoing: Outgoing = []
        with self._state_lock:
            self.router.route(handle, data, outgoing)
        self.broadcaster.flush(outgoing)

    def on_close(self, handle: Handle) -> None:
        outgoing: Outgoing = []
        with self._state_lock:
            self.remove_connection_locked(handle, outgoing, reason="closed")
        self.broadcaster.flush(outgoing)

    def on_error(self, handle: Handle, err: BaseException) -> None:
        self.log.warning("Error on conn=%s: %s", self.fmt_handle(handle), err)
        outgoing: Outgoing = []
        with self._state_lock:
            self.remove_connection_locked(handle, outgoing, reason="error")
        self.broadcaster.flush(outgoing)

    def on_probe_ack(self, handle: Handle) -> None:
        self.monitor.on_ack(handle)

    # Helpers shared by the router and the liveness monitor

    def remove_connection_locked(
        self, handle: Handle, outgoing: Outgoing, *, reason: str
    ) -> ConnectionRecord | None:
        """
        Unregister ``handle`` and queue the ``user_left`` notice.

        Returns None without side effects if it was already removed, so the
        close, error and eviction paths may all call this for one connection.
        Must be called with the state lock held.
        """
        rec = self.registry.unregister(handle)
        if rec is None:
            return None

        self.stats.inc("disconnections")
        self.broadcaster.broadcast_all(
            outgoing,
            make_envelope(
                T_USER_LEFT,
                {K_MESSAGE: f"{rec.username} left the chat", B_CLIENT_ID: rec.id},
            ),
        )
        self.log.info(
            "Client %s (%s) disconnected reason=%s", rec.id, rec.username, reason
        )
        return rec

    def emit_error(self, outgoing: Outgoing, handle: Handle, text: str) -> None:
        self.stats.inc("errors_sent")
        self.broadcaster.send_to(outgoing, handle, make_envelope(T_ERROR, {K_MESSAGE: text}))
