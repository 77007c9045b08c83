"""Event bus tests"""

from __future__ import annotations

from ips_dashboard.events import EventBus


def test_subscribe_and_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    bus.publish("collection.refreshed", "tasks", total=3)
    unsubscribe()
    bus.publish("collection.refreshed", "tasks", total=4)
    assert len(seen) == 1
    assert seen[0].view == "tasks"
    assert seen[0].data == {"total": 3}


def test_failing_listener_does_not_block_others():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.publish("toast")
    assert [e.kind for e in seen] == ["toast"]


async def test_queue_drops_oldest_when_full():
    bus = EventBus(max_queue=2)
    q = bus.open_queue()
    for n in range(3):
        bus.publish("tick", n=n)
    assert [q.get_nowait().data["n"] for _ in range(2)] == [1, 2]
    bus.close_queue(q)
    bus.publish("tick", n=9)
    assert q.empty()
