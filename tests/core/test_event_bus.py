"""
Event Bus Tests

Tests for typed publish/subscribe showing:
- Delivery by event class
- Scoped subscriptions (owner / task)
- Unsubscribe and clear
- Subscriber errors never reach the publisher

To run these tests:
    pytest tests/core/test_event_bus.py -v
"""

import asyncio
from dataclasses import dataclass

import pytest

from core.event_bus import EventBus


@dataclass(frozen=True)
class Ping:
    owner_id: str
    task_id: str = ""


@dataclass(frozen=True)
class Pong:
    owner_id: str


@pytest.fixture
def bus():
    return EventBus()


# =============================================================================
# DELIVERY TESTS
# =============================================================================


@pytest.mark.unit
def test_publish_reaches_subscriber_of_same_class(bus):
    """Subscriber receives the event instance it subscribed to"""
    received = []
    bus.subscribe(Ping, received.append)

    delivered = bus.publish(Ping(owner_id="u1"))

    assert delivered == 1
    assert received == [Ping(owner_id="u1")]


@pytest.mark.unit
def test_other_event_classes_are_not_delivered(bus):
    received = []
    bus.subscribe(Ping, received.append)

    assert bus.publish(Pong(owner_id="u1")) == 0
    assert received == []


@pytest.mark.unit
def test_delivery_follows_subscription_order(bus):
    order = []
    bus.subscribe(Ping, lambda event: order.append("first"))
    bus.subscribe(Ping, lambda event: order.append("second"))

    bus.publish(Ping(owner_id="u1"))

    assert order == ["first", "second"]


# =============================================================================
# SCOPE TESTS
# =============================================================================


@pytest.mark.unit
def test_owner_scope_filters_other_owners(bus):
    """
    Test owner-scoped subscriptions.

    Should:
    - Deliver events of the subscribed owner
    - Never deliver another owner's events
    """
    u1_events = []
    bus.subscribe(Ping, u1_events.append, owner_id="u1")

    bus.publish(Ping(owner_id="u2"))
    bus.publish(Ping(owner_id="u1"))

    assert [event.owner_id for event in u1_events] == ["u1"]


@pytest.mark.unit
def test_task_scope_requires_every_attribute_to_match(bus):
    received = []
    bus.subscribe(Ping, received.append, owner_id="u1", task_id="t1")

    bus.publish(Ping(owner_id="u1", task_id="t2"))
    bus.publish(Ping(owner_id="u2", task_id="t1"))
    bus.publish(Ping(owner_id="u1", task_id="t1"))

    assert received == [Ping(owner_id="u1", task_id="t1")]


@pytest.mark.unit
def test_none_scope_values_are_ignored(bus):
    received = []
    bus.subscribe(Ping, received.append, owner_id=None)

    bus.publish(Ping(owner_id="anyone"))

    assert len(received) == 1


# =============================================================================
# UNSUBSCRIBE TESTS
# =============================================================================


@pytest.mark.unit
def test_unsubscribe_stops_delivery(bus):
    received = []
    subscription = bus.subscribe(Ping, received.append)

    subscription.unsubscribe()
    subscription.unsubscribe()  # second call is harmless
    bus.publish(Ping(owner_id="u1"))

    assert received == []
    assert subscription.active is False
    assert bus.subscriber_count(Ping) == 0


@pytest.mark.unit
def test_unsubscribe_during_delivery(bus):
    """A callback may unsubscribe itself while the event is being delivered"""
    received = []

    def once(event):
        received.append(event)
        subscription.unsubscribe()

    subscription = bus.subscribe(Ping, once)
    bus.publish(Ping(owner_id="u1"))
    bus.publish(Ping(owner_id="u1"))

    assert len(received) == 1


@pytest.mark.unit
def test_clear_drops_every_subscription(bus):
    subscription = bus.subscribe(Ping, lambda event: None)
    bus.subscribe(Pong, lambda event: None)

    bus.clear()

    assert bus.subscriber_count() == 0
    assert subscription.active is False


# =============================================================================
# ERROR HANDLING TESTS
# =============================================================================


@pytest.mark.unit
def test_subscriber_error_is_isolated(bus, caplog):
    """
    Test a failing subscriber.

    Should:
    - Log the error
    - Still deliver to later subscribers
    - Not raise into the publisher
    """
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(Ping, broken)
    bus.subscribe(Ping, received.append)

    bus.publish(Ping(owner_id="u1"))

    assert len(received) == 1
    assert "boom" in caplog.text


@pytest.mark.unit
@pytest.mark.asyncio
async def test_coroutine_subscriber_is_scheduled(bus):
    received = []

    async def handler(event):
        received.append(event)

    bus.subscribe(Ping, handler)
    bus.publish(Ping(owner_id="u1"))

    # Scheduled, not yet run
    assert received == []
    await asyncio.sleep(0)
    assert received == [Ping(owner_id="u1")]


@pytest.mark.unit
def test_coroutine_subscriber_without_loop_is_dropped(bus, caplog):
    async def handler(event):
        pass

    bus.subscribe(Ping, handler)
    bus.publish(Ping(owner_id="u1"))

    assert "Cannot schedule async subscriber" in caplog.text
