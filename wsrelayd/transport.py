"""WebSocket transport built on the websockets threading server."""

from __future__ import annotations

import logging
import queue
import socket
import threading
import time
from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING, Callable

from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.sync.server import Server, ServerConnection, serve

from .config import RelayRuntimeConfig
from .constants import CLOSE_INTERNAL_ERROR, CLOSE_NORMAL, HTTP_STATUS_TEXT
from .util import peer_ip

if TYPE_CHECKING:
    from websockets.http11 import Request, Response

    from .service import RelayService


@dataclass(frozen=True)
class _CloseRequest:
    code: int
    reason: str


@dataclass(frozen=True)
class _PingRequest:
    on_pong: Callable[[], None]
    timeout_s: float


class _Outbox:
    """Bounded send queue for one connection, drained by its own writer thread.

    A slow peer only ever blocks its own writer; producers never wait.
    """

    def __init__(
        self, connection: ServerConnection, *, maxsize: int, log: logging.Logger
    ) -> None:
        self.connection = connection
        self.log = log
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, int(maxsize)))
        self._closed = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"wsrelayd-out-{connection.id}", daemon=True
        )

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        self._thread.start()

    def put(self, item: str | _PingRequest) -> bool:
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            return False
        return True

    def close(self, code: int, reason: str) -> None:
        """Graceful close after everything already queued has been written."""
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._queue.put_nowait(_CloseRequest(code, reason))
        except queue.Full:
            self.abort()

    def abort(self) -> None:
        """Cut the TCP connection without a closing handshake."""
        self._closed.set()
        try:
            self.connection.socket.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            self.log.debug("Socket shutdown failed conn=%s err=%s", self.connection.id, e)

    def stop(self) -> None:
        self._closed.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            # The writer is busy and will fail on its next send.
            pass

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            try:
                if isinstance(item, _CloseRequest):
                    self.connection.close(item.code, item.reason)
                    return
                if isinstance(item, _PingRequest):
                    self._ping(item)
                    continue
                self.connection.send(item)
            except ConnectionClosed:
                return
            except Exception:
                self.log.warning(
                    "Writer failed conn=%s", self.connection.id, exc_info=True
                )
                return

    def _ping(self, request: _PingRequest) -> None:
        pong = self.connection.ping()

        def await_pong() -> None:
            if pong.wait(request.timeout_s):
                request.on_pong()

        threading.Thread(
            target=await_pong, name=f"wsrelayd-pong-{self.connection.id}", daemon=True
        ).start()


class WebSocketTransport:
    """
    Accepts WebSocket connections and feeds them to a RelayService.

    The connection object itself is the handle the service registers. Each
    handler thread reports on_connect, on_message per frame, on_error on an
    abnormal close and on_close when the connection ends.
    """

    def __init__(self, hub: RelayService, config: RelayRuntimeConfig) -> None:
        self.hub = hub
        self.config = config
        self.log = logging.getLogger("wsrelayd.transport")
        self._lock = threading.Lock()
        self._outboxes: dict[ServerConnection, _Outbox] = {}
        self._server: Server | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._server = serve(
            self._handle,
            self.config.host,
            int(self.config.port),
            process_request=self._process_request,
            ping_interval=None,
            close_timeout=float(self.config.close_timeout_s),
            max_size=int(self.config.max_message_bytes) or None,
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="wsrelayd-server", daemon=True
        )
        self._thread.start()
        self.log.info(
            "Listening on ws://%s:%s", self.config.host, self.local_port()
        )

    def local_port(self) -> int | None:
        if self._server is None:
            return None
        return int(self._server.socket.getsockname()[1])

    def wait_closed(self, timeout: float) -> bool:
        """Wait for every handler to finish; returns False on timeout."""
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            with self._lock:
                if not self._outboxes:
                    return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.05)

    def shutdown(self, timeout: float = 5.0) -> None:
        if self._server is not None:
            self._server.shutdown()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._server = None
        self._thread = None

    def send(self, handle: ServerConnection, payload: str) -> bool:
        with self._lock:
            outbox = self._outboxes.get(handle)
        if outbox is None:
            return False
        if outbox.put(payload):
            return True
        if not outbox.closed:
            self.log.warning("Send queue full; dropping slow conn=%s", handle.id)
            outbox.abort()
        return False

    def close(
        self, handle: ServerConnection, code: int = CLOSE_NORMAL, reason: str = ""
    ) -> None:
        with self._lock:
            outbox = self._outboxes.get(handle)
        if outbox is not None:
            outbox.close(code, reason)

    def terminate(self, handle: ServerConnection) -> None:
        with self._lock:
            outbox = self._outboxes.get(handle)
        if outbox is not None:
            outbox.abort()

    def probe(self, handle: ServerConnection) -> bool:
        """
        Queue a WebSocket ping behind the payloads already waiting for
        ``handle``. The pong is reported through ``hub.on_probe_ack``.

        Never writes to the socket from the calling thread. A connection whose
        outbox cannot take the ping is cut.
        """
        with self._lock:
            outbox = self._outboxes.get(handle)
        if outbox is None:
            return False

        request = _PingRequest(
            on_pong=lambda: self.hub.on_probe_ack(handle),
            timeout_s=max(1.0, float(self.config.heartbeat_interval_s)),
        )
        if outbox.put(request):
            return True
        if not outbox.closed:
            self.log.warning("Send queue full; dropping unresponsive conn=%s", handle.id)
            outbox.abort()
        return False

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None
        path = request.path.split("?", 1)[0]
        if path == "/stats":
            return connection.respond(HTTPStatus.OK, self.hub.stats.format_stats())
        return connection.respond(HTTPStatus.OK, HTTP_STATUS_TEXT)

    def _handle(self, connection: ServerConnection) -> None:
        outbox = _Outbox(connection, maxsize=self.config.send_queue_size, log=self.log)
        with self._lock:
            self._outboxes[connection] = outbox
        outbox.start()

        try:
            self.hub.on_connect(connection, peer_ip(connection.remote_address))
            for message in connection:
                self.hub.on_message(connection, message)
        except ConnectionClosedError as e:
            self.hub.on_error(connection, e)
        except Exception as e:
            self.log.exception("Handler failed conn=%s", connection.id)
            self.hub.on_error(connection, e)
            outbox.close(CLOSE_INTERNAL_ERROR, "internal error")
        finally:
            self.hub.on_close(connection)
            with self._lock:
                self._outboxes.pop(connection, None)
            outbox.stop()
