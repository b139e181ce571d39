"""Tests for the in-process event bus."""

from __future__ import annotations

from wsus_gateway.services.events import ALL_EVENTS, EventBus


def test_publish_order_and_payload():
    bus = EventBus()
    seen = []
    bus.subscribe("job.created", lambda e: seen.append(("a", e)))
    bus.subscribe("job.created", lambda e: seen.append(("b", e)))
    bus.publish("job.created", {"job": {"id": "x"}})
    assert [tag for tag, _ in seen] == ["a", "b"]
    assert seen[0][1] == {"event": "job.created", "job": {"id": "x"}}


def test_wildcard_receives_everything():
    bus = EventBus()
    seen = []
    bus.subscribe(ALL_EVENTS, lambda e: seen.append(e["event"]))
    bus.publish("one")
    bus.publish("two")
    assert seen == ["one", "two"]


def test_failing_handler_isolated():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe("x", broken)
    bus.subscribe("x", lambda e: seen.append(e))
    bus.publish("x")
    assert len(seen) == 1


def test_unsubscribe():
    bus = EventBus()
    seen = []
    off = bus.subscribe("x", seen.append)
    assert bus.handler_count("x") == 1
    off()
    assert bus.handler_count("x") == 0
    bus.publish("x")
    assert seen == []
    # Unsubscribing twice is harmless.
    off()


def test_unsubscribe_during_publish():
    bus = EventBus()
    seen = []
    off = None

    def once(event):
        seen.append(event)
        off()

    off = bus.subscribe("x", once)
    bus.publish("x")
    bus.publish("x")
    assert len(seen) == 1
