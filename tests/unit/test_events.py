"""
Unit tests for the EventBus.

Tests cover:
- Sync and async subscribers
- Unsubscribing
- Subscriber failure isolation
- Queue-backed channels and overflow
"""

import asyncio
import logging

import pytest

from toolmux.events import EventBus, EventType, RegistryEvent


def make_event(name: str = "echo", event_type: EventType = EventType.TOOL_ADDED) -> RegistryEvent:
    return RegistryEvent(type=event_type, payload={"name": name})


class TestRegistryEvent:
    """Tests for the event model."""

    def test_to_dict(self) -> None:
        """Events serialize with their camelCase type."""
        data = make_event().to_dict()
        assert data["type"] == "toolAdded"
        assert data["payload"] == {"name": "echo"}
        assert "timestamp" in data

    def test_frozen(self) -> None:
        """Events cannot be modified after publication."""
        event = make_event()
        with pytest.raises(Exception):
            event.type = EventType.TOOL_REMOVED  # type: ignore[misc]


class TestSubscribe:
    """Tests for callback subscriptions."""

    def test_sync_callback(self) -> None:
        """Plain functions receive every event in order."""
        bus = EventBus()
        received: list[str] = []
        bus.subscribe(lambda event: received.append(event.payload["name"]))

        async def scenario() -> None:
            await bus.publish(make_event("a"))
            await bus.publish(make_event("b"))

        asyncio.run(scenario())
        assert received == ["a", "b"]

    def test_async_callback(self) -> None:
        """Coroutine functions are awaited."""
        bus = EventBus()
        received: list[EventType] = []

        async def on_event(event: RegistryEvent) -> None:
            await asyncio.sleep(0)
            received.append(event.type)

        bus.subscribe(on_event)
        asyncio.run(bus.publish(make_event(event_type=EventType.PROVIDER_ADDED)))
        assert received == [EventType.PROVIDER_ADDED]

    def test_close_stops_delivery(self) -> None:
        """A closed subscription receives nothing further."""
        bus = EventBus()
        received: list[RegistryEvent] = []
        subscription = bus.subscribe(received.append)
        assert bus.subscriber_count == 1

        subscription.close()
        subscription.close()
        asyncio.run(bus.publish(make_event()))

        assert received == []
        assert bus.subscriber_count == 0

    def test_context_manager(self) -> None:
        """Subscriptions close when used as context managers."""
        bus = EventBus()
        with bus.subscribe(lambda event: None) as subscription:
            assert not subscription.closed
        assert subscription.closed
        assert bus.subscriber_count == 0

    def test_failing_subscriber_is_isolated(self, caplog: pytest.LogCaptureFixture) -> None:
        """An exception in one subscriber doesn't reach the publisher or others."""
        bus = EventBus()
        received: list[RegistryEvent] = []

        def broken(event: RegistryEvent) -> None:
            raise RuntimeError("subscriber bug")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        with caplog.at_level(logging.ERROR, logger="toolmux.events"):
            asyncio.run(bus.publish(make_event()))

        assert len(received) == 1
        assert "Event subscriber failed" in caplog.text

    def test_no_replay(self) -> None:
        """Late subscribers don't see earlier events."""
        bus = EventBus()
        received: list[RegistryEvent] = []

        async def scenario() -> None:
            await bus.publish(make_event("before"))
            bus.subscribe(received.append)
            await bus.publish(make_event("after"))

        asyncio.run(scenario())
        assert [e.payload["name"] for e in received] == ["after"]


class TestEventChannel:
    """Tests for queue-backed channels."""

    def test_iterate_until_closed(self) -> None:
        """async for yields queued events and stops after close."""
        bus = EventBus()

        async def scenario() -> list[str]:
            channel = bus.open_channel()
            await bus.publish(make_event("a"))
            await bus.publish(make_event("b"))
            channel.close()
            return [event.payload["name"] async for event in channel]

        assert asyncio.run(scenario()) == ["a", "b"]

    def test_consumer_waits_for_events(self) -> None:
        """A waiting consumer is woken by a publish."""
        bus = EventBus()

        async def scenario() -> str:
            channel = bus.open_channel()
            waiter = asyncio.create_task(channel.get())
            await asyncio.sleep(0)
            await bus.publish(make_event("late"))
            event = await asyncio.wait_for(waiter, 1)
            channel.close()
            return event.payload["name"]

        assert asyncio.run(scenario()) == "late"

    def test_full_channel_drops(self, caplog: pytest.LogCaptureFixture) -> None:
        """Events beyond maxsize are dropped for that channel only."""
        bus = EventBus()
        received: list[RegistryEvent] = []

        async def scenario() -> int:
            channel = bus.open_channel(maxsize=2)
            bus.subscribe(received.append)
            for name in ("a", "b", "c"):
                await bus.publish(make_event(name))
            return channel.dropped

        with caplog.at_level(logging.WARNING, logger="toolmux.events"):
            dropped = asyncio.run(scenario())

        assert dropped == 1
        assert len(received) == 3
        assert "dropping" in caplog.text

    def test_get_after_close_returns_none(self) -> None:
        """A closed, drained channel returns None."""
        bus = EventBus()

        async def scenario() -> None:
            channel = bus.open_channel()
            channel.close()
            assert await channel.get() is None
            assert await channel.get() is None
            assert bus.subscriber_count == 0

        asyncio.run(scenario())
