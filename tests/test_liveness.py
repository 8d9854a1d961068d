def test_first_tick_probes_everyone(hub, connect, transport) -> None:
    a, b = connect("a"), connect("b")
    transport.reset()

    evicted, probed = hub.monitor.tick()

    assert evicted == []
    assert probed == [a, b]
    assert transport.probed == [a, b]
    assert all(not r.alive for r in hub.registry.snapshot())
    assert transport.sent == []


def test_unanswered_probe_evicts_on_next_tick(hub, connect, transport) -> None:
    a, b, c = connect("a"), connect("b"), connect("c")
    b_id = hub.registry.lookup_by_handle(b).id

    hub.monitor.tick()
    hub.on_probe_ack(a)
    hub.on_probe_ack(c)
    transport.reset()

    evicted, probed = hub.monitor.tick()

    assert evicted == [b]
    assert probed == [a, c]
    assert transport.terminated == [b]
    assert b not in hub.registry
    assert hub.registry.size() == 2

    left = [(h, m) for h, m in transport.sent if m["type"] == "user_left"]
    assert sorted(h.name for h, _ in left) == ["a", "c"]
    assert all(m["clientId"] == b_id for _, m in left)
    assert all("acknowledged" not in m for _, m in left)
    assert hub.stats.get("evictions") == 1


def test_close_after_eviction_does_not_announce_twice(hub, connect, transport) -> None:
    a, b = connect("a"), connect("b")
    hub.monitor.tick()
    hub.on_probe_ack(a)
    hub.monitor.tick()
    transport.reset()

    hub.on_close(b)
    hub.on_error(b, OSError("reset"))

    assert transport.sent == []
    assert hub.registry.size() == 1


def test_ack_before_second_probe_keeps_connection(hub, connect, transport) -> None:
    a = connect("a")
    for _ in range(5):
        hub.monitor.tick()
        hub.on_probe_ack(a)
    assert a in hub.registry
    assert transport.terminated == []


def test_application_ping_does_not_count_as_ack(hub, connect, send, transport) -> None:
    a = connect("a")
    hub.monitor.tick()
    send(a, {"type": "ping"})

    evicted, _ = hub.monitor.tick()
    assert evicted == [a]


def test_ack_for_unknown_handle_is_ignored(hub) -> None:
    hub.on_probe_ack(object())
    assert hub.stats.get("probe_acks") == 0


def test_tick_after_shutdown_does_nothing(hub, connect, transport) -> None:
    connect("a")
    hub.stop()
    transport.reset()
    assert hub.monitor.tick() == ([], [])
    assert transport.probed == []
