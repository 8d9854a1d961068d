"""Fan-out and direct delivery for the relay."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import encode
from .envelope import with_ack
from .registry import Handle

if TYPE_CHECKING:
    from .service import RelayService

Outgoing = list[tuple[Handle, str]]


class Broadcaster:
    """
    Builds and delivers outbound payloads.

    The queue_* / send_to / broadcast_* methods only append ``(handle, payload)``
    pairs to an ``outgoing`` list and must be called with the state lock held.
    ``flush`` performs the actual transport writes and must be called after the
    lock is released.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("wsrelayd.broadcast")

    def queue_payload(self, outgoing: Outgoing, handle: Handle, payload: str) -> None:
        outgoing.append((handle, payload))

    def queue_env(self, outgoing: Outgoing, handle: Handle, env: dict) -> None:
        self.queue_payload(outgoing, handle, encode(env))

    def send_to(self, outgoing: Outgoing, handle: Handle, env: dict) -> bool:
        """Queue ``env`` for one connection; no-op if it is no longer registered."""
        if handle not in self.hub.registry:
            return False
        self.queue_env(outgoing, handle, env)
        return True

    def broadcast_except(
        self, outgoing: Outgoing, env: dict, exclude: Handle | None = None
    ) -> int:
        """Queue ``env`` for every connection.

        ``exclude`` gets a copy marked ``acknowledged: true`` instead of the
        plain relay. Returns the number of payloads queued.
        """
        payload = encode(env)
        acked: str | None = None
        count = 0
        for handle in self.hub.registry.handles():
            if exclude is not None and handle == exclude:
                if acked is None:
                    acked = encode(with_ack(env))
                self.queue_payload(outgoing, handle, acked)
            else:
                self.queue_payload(outgoing, handle, payload)
            count += 1
        return count

    def broadcast_all(self, outgoing: Outgoing, env: dict) -> int:
        return self.broadcast_except(outgoing, env, None)

    def flush(self, outgoing: Outgoing) -> int:
        """Hand queued payloads to the transport; returns the number delivered.

        A failure on one connection is logged and skipped.
        """
        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug("Flushing %d payload(s)", len(outgoing))

        delivered = 0
        transport = self.hub.transport
        for handle, payload in outgoing:
            try:
                ok = transport.send(handle, payload)
            except Exception:
                self.log.warning(
                    "Send failed conn=%s bytes=%s",
                    self.hub.fmt_handle(handle),
                    len(payload),
                    exc_info=True,
                )
                ok = False

            if ok:
                delivered += 1
                self.hub.stats.inc("bytes_out", len(payload.encode("utf-8")))
            else:
                self.hub.stats.inc("send_failures")
                self.log.debug(
                    "Dropped payload for closed conn=%s bytes=%s",
                    self.hub.fmt_handle(handle),
                    len(payload),
                )
        return delivered
