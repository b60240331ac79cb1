"""Test the event bus, signals and cascade queue."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from questengine.core.events import (
    CascadeOverflowError, CascadeQueue, EventBus, Signal, Subscription, SubscriptionScope,
)


def test_subscription_dispose_is_idempotent():
    """Disposing twice calls the release hook once."""
    released = []
    handle = Subscription(released.append)

    assert handle.active
    handle.dispose()
    handle.dispose()

    assert not handle.active
    assert released == [handle]


def test_subscription_context_manager():
    released = []
    with Subscription(released.append) as handle:
        assert handle.active
    assert not handle.active
    assert len(released) == 1


def test_subscription_scope_closes_all():
    bus = EventBus()
    scope = SubscriptionScope()
    scope.add(bus.subscribe("a", lambda p: None))
    scope.add(bus.subscribe("b", lambda p: None))
    assert len(scope) == 2

    scope.close()
    scope.close()

    assert len(scope) == 0
    assert bus.subscriber_count("a") == 0
    assert bus.subscriber_count("b") == 0


def test_bus_delivers_in_subscription_order():
    bus = EventBus()
    received = []
    bus.subscribe("hit", lambda p: received.append(("first", p)))
    bus.subscribe("hit", lambda p: received.append(("second", p)))

    bus.raise_event("hit", 3)

    assert received == [("first", 3), ("second", 3)]


def test_bus_predicate_filters_payload():
    bus = EventBus()
    received = []
    bus.subscribe("enemy_killed", received.append, lambda p: p == "wolf")

    bus.raise_event("enemy_killed", "rabbit")
    bus.raise_event("enemy_killed", "wolf")

    assert received == ["wolf"]


def test_bus_unsubscribe():
    bus = EventBus()
    received = []
    handle = bus.subscribe("hit", received.append)

    bus.unsubscribe(handle)
    bus.unsubscribe(handle)
    bus.raise_event("hit", 1)

    assert received == []
    assert bus.subscriber_count("hit") == 0


def test_bus_skips_subscriber_disposed_during_delivery():
    """A subscriber disposed before its turn is not notified."""
    bus = EventBus()
    received = []
    second = None

    def first(payload):
        received.append("first")
        second.dispose()

    bus.subscribe("hit", first)
    second = bus.subscribe("hit", lambda p: received.append("second"))

    bus.raise_event("hit")

    assert received == ["first"]


def test_bus_snapshot_excludes_subscribers_added_during_delivery():
    bus = EventBus()
    received = []

    def first(payload):
        received.append("first")
        bus.subscribe("hit", lambda p: received.append("late"))

    bus.subscribe("hit", first)
    bus.raise_event("hit")
    assert received == ["first"]

    bus.raise_event("hit")
    assert received == ["first", "first", "late"]


def test_nested_raise_is_queued_after_current_delivery():
    """Events raised during a cascade run after the current delivery finishes."""
    bus = EventBus()
    order = []

    def on_a(payload):
        order.append("a1")
        bus.raise_event("b")
        order.append("a1-done")

    bus.subscribe("a", on_a)
    bus.subscribe("a", lambda p: order.append("a2"))
    bus.subscribe("b", lambda p: order.append("b"))

    bus.raise_event("a")

    assert order == ["a1", "a1-done", "a2", "b"]


def test_signal_emit_and_disconnect():
    signal = Signal("test")
    received = []
    handle = signal.connect(lambda *args: received.append(args))

    signal.emit(1, 2)
    handle.dispose()
    signal.emit(3, 4)

    assert received == [(1, 2)]
    assert len(signal) == 0


def test_cascade_queue_drains_posted_jobs():
    queue = CascadeQueue()
    order = []

    def outer():
        order.append("outer")
        queue.post(lambda: order.append("posted"))
        queue.run(lambda: order.append("nested run"))
        order.append("outer done")

    queue.run(outer)

    assert order == ["outer", "outer done", "posted", "nested run"]
    assert len(queue) == 0
    assert not queue.draining


def test_cascade_queue_overflow():
    """A self-perpetuating cascade is stopped by the step budget."""
    queue = CascadeQueue(max_steps=50)

    def loop():
        queue.post(loop)

    with pytest.raises(CascadeOverflowError):
        queue.run(loop)

    assert len(queue) == 0
    assert not queue.draining


def test_cascade_queue_clears_after_error():
    queue = CascadeQueue()
    ran = []

    def boom():
        queue.post(lambda: ran.append("stale"))
        raise ValueError("boom")

    with pytest.raises(ValueError):
        queue.run(boom)

    queue.run(lambda: ran.append("fresh"))
    assert ran == ["fresh"]
