import pytest
from vtp.infrastructure.event_bus import EventBus
from vtp.domain.events import Event

class MockEvent(Event):
    message: str

class OtherEvent(Event):
    pass

def test_event_bus_subscribe_publish():
    bus = EventBus()
    received_events = []

    bus.subscribe(MockEvent, received_events.append)
    bus.publish(MockEvent(message="hello"))

    assert len(received_events) == 1
    assert received_events[0].message == "hello"

def test_event_bus_multiple_subscribers():
    bus = EventBus()
    results = {"a": False, "b": False}

    bus.subscribe(MockEvent, lambda e: results.update({"a": True}))
    bus.subscribe(MockEvent, lambda e: results.update({"b": True}))

    bus.publish(MockEvent(message="test"))

    assert results["a"] is True
    assert results["b"] is True

def test_event_bus_decorator_subscribe():
    bus = EventBus()
    received = []

    @bus.subscribe(MockEvent)
    def on_event(event: MockEvent):
        received.append(event)

    bus.publish(MockEvent(message="decorator"))
    assert len(received) == 1
    assert received[0].message == "decorator"

def test_event_bus_routes_by_type():
    bus = EventBus()
    received = []
    bus.subscribe(OtherEvent, received.append)
    bus.publish(MockEvent(message="not for you"))
    assert received == []

def test_event_bus_unsubscribe():
    bus = EventBus()
    received = []
    bus.subscribe(MockEvent, received.append)
    bus.unsubscribe(MockEvent, received.append)
    bus.publish(MockEvent(message="x"))
    assert received == []

def test_event_bus_failing_subscriber_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(MockEvent, broken)
    bus.subscribe(MockEvent, received.append)
    bus.publish(MockEvent(message="still delivered"))

    assert [e.message for e in received] == ["still delivered"]
