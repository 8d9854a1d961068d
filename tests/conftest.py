import json

import pytest

from wsrelayd.config import RelayRuntimeConfig
from wsrelayd.service import RelayService


class FakeConn:
    """Stand-in for a transport connection handle."""

    _next = 0

    def __init__(self, name: str) -> None:
        FakeConn._next += 1
        self.id = f"{name}-{FakeConn._next}"
        self.name = name

    def __repr__(self) -> str:
        return f"FakeConn({self.name!r})"


class FakeTransport:
    def __init__(self) -> None:
        self.sent: list[tuple[FakeConn, dict]] = []
        self.closed: list[tuple[FakeConn, int]] = []
        self.terminated: list[FakeConn] = []
        self.probed: list[FakeConn] = []
        self.failing: set[FakeConn] = set()
        self.started = False
        self.shut_down = False

    def start(self) -> None:
        self.started = True

    def shutdown(self) -> None:
        self.shut_down = True

    def wait_closed(self, timeout: float) -> bool:
        return True

    def send(self, handle, payload: str) -> bool:
        if handle in self.failing:
            raise OSError("connection reset")
        self.sent.append((handle, json.loads(payload)))
        return True

    def close(self, handle, code: int = 1000, reason: str = "") -> None:
        self.closed.append((handle, code))

    def terminate(self, handle) -> None:
        self.terminated.append(handle)

    def probe(self, handle) -> bool:
        self.probed.append(handle)
        return True

    def messages_for(self, handle) -> list[dict]:
        return [m for h, m in self.sent if h is handle]

    def reset(self) -> None:
        self.sent.clear()
        self.closed.clear()
        self.terminated.clear()
        self.probed.clear()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config() -> RelayRuntimeConfig:
    return RelayRuntimeConfig(heartbeat_interval_s=0)


@pytest.fixture
def hub(config, transport) -> RelayService:
    return RelayService(config, transport=transport)


@pytest.fixture
def connect(hub):
    def _connect(name: str = "conn", ip: str = "127.0.0.1") -> FakeConn:
        conn = FakeConn(name)
        assert hub.on_connect(conn, ip) is not None
        return conn

    return _connect


@pytest.fixture
def send(hub):
    def _send(conn: FakeConn, msg) -> None:
        hub.on_message(conn, msg if isinstance(msg, str) else json.dumps(msg))

    return _send
