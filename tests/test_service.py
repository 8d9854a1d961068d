from wsrelayd.config import RelayRuntimeConfig
from wsrelayd.constants import CLOSE_GOING_AWAY
from wsrelayd.service import RelayService


def test_connect_sends_welcome_and_announces_join(hub, connect, transport) -> None:
    a = connect("a")
    transport_msgs = transport.messages_for(a)
    assert [m["type"] for m in transport_msgs] == ["welcome", "user_joined"]
    welcome, joined = transport_msgs
    assert welcome["clientId"] == 1
    assert welcome["message"] == "Welcome to the WebSocket Server! Your ID: 1"
    assert joined["acknowledged"] is True

    transport.reset()
    b = connect("b")
    [other] = transport.messages_for(a)
    assert other["type"] == "user_joined"
    assert other["clientId"] == 2
    assert other["message"] == "User_2 joined the chat"
    assert "acknowledged" not in other
    assert [m["type"] for m in transport.messages_for(b)] == ["welcome", "user_joined"]


def test_custom_greeting_and_prefix(transport) -> None:
    cfg = RelayRuntimeConfig(greeting="Hi!", username_prefix="Guest", heartbeat_interval_s=0)
    svc = RelayService(cfg, transport=transport)

    class Conn:
        pass

    conn = Conn()
    svc.on_connect(conn, "::1")
    welcome, joined = transport.messages_for(conn)
    assert welcome["message"] == "Hi! Your ID: 1"
    assert joined["message"] == "Guest1 joined the chat"


def test_registry_tracks_open_connections(hub, connect) -> None:
    conns = [connect(f"c{i}") for i in range(5)]
    hub.on_close(conns[1])
    hub.on_close(conns[3])
    hub.on_close(conns[3])
    assert hub.registry.size() == 3

    later = connect("late")
    assert hub.registry.lookup_by_handle(later).id == 6
    ids = [r.id for r in hub.registry.snapshot()]
    assert ids == sorted(set(ids))


def test_close_announces_leave_once(hub, connect, transport) -> None:
    a, b = connect("a"), connect("b")
    hub.on_message(a, '{"type": "set_username", "username": "alice"}')
    transport.reset()

    hub.on_close(a)
    hub.on_close(a)

    [(handle, msg)] = transport.sent
    assert handle is b
    assert msg["type"] == "user_left"
    assert msg["message"] == "alice left the chat"
    assert msg["clientId"] == 1


def test_error_removes_connection(hub, connect, transport) -> None:
    a, b = connect("a"), connect("b")
    transport.reset()

    hub.on_error(a, ConnectionResetError("peer reset"))

    assert a not in hub.registry
    assert [m["type"] for m in transport.messages_for(b)] == ["user_left"]


def test_send_failure_does_not_abort_broadcast(hub, connect, transport) -> None:
    a, b, c = connect("a"), connect("b"), connect("c")
    transport.reset()
    transport.failing.add(b)

    hub.on_message(a, '{"type": "chat", "text": "hi"}')

    assert len(transport.messages_for(a)) == 1
    assert len(transport.messages_for(c)) == 1
    assert transport.messages_for(b) == []
    assert hub.stats.get("send_failures") == 1


def test_stop_closes_everything(hub, connect, transport) -> None:
    hub.start()
    assert transport.started
    a, b = connect("a"), connect("b")
    transport.reset()

    hub.stop()

    assert sorted(h.name for h, _ in transport.closed) == ["a", "b"]
    assert all(code == CLOSE_GOING_AWAY for _, code in transport.closed)
    assert hub.registry.size() == 0
    assert transport.shut_down

    # Handlers report the closes afterwards; nobody is left to notify.
    hub.on_close(a)
    hub.on_close(b)
    assert transport.sent == []


def test_stop_is_idempotent(hub, connect, transport) -> None:
    connect("a")
    hub.stop()
    transport.reset()
    hub.stop()
    assert transport.closed == []


def test_connect_during_shutdown_is_refused(hub, transport) -> None:
    hub.stop()

    class Conn:
        pass

    conn = Conn()
    assert hub.on_connect(conn, "127.0.0.1") is None
    assert transport.closed == [(conn, CLOSE_GOING_AWAY)]
    assert hub.registry.size() == 0


def test_stats_report_counts_activity(hub, connect) -> None:
    a = connect("a")
    hub.on_message(a, '{"type": "ping"}')
    hub.on_message(a, "garbage")
    report = hub.stats.format_stats()
    assert "clients=1" in report
    assert "msgs_in=2 msgs_bad=1" in report
    assert "pings=1" in report


def test_monitor_disabled_when_interval_zero(transport) -> None:
    svc = RelayService(RelayRuntimeConfig(heartbeat_interval_s=0), transport=transport)
    svc.start()
    assert svc.monitor._thread is None
    svc.stop()
