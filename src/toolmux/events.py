"""
Registry event publication.

The EventBus is the single publish point for registry deltas. The enclosing
application registers callbacks or opens channels to carry the events to
its own real-time transport (websocket, server-sent events, a chat UI).

Delivery model:
    - At-most-once per subscriber, in publish order
    - No replay: a new subscriber must pull the full state from the store
    - Subscribers only observe; a failing subscriber is logged and skipped
"""

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Kinds of registry delta."""

    PROVIDER_ADDED = "providerAdded"
    PROVIDER_REMOVED = "providerRemoved"
    TOOL_ADDED = "toolAdded"
    TOOL_REMOVED = "toolRemoved"


class RegistryEvent(BaseModel):
    """
    A single registry delta.

    Attributes:
        type: What changed
        payload: Serializable summary of the affected provider or tool
        timestamp: When the event was published
    """

    model_config = ConfigDict(frozen=True)

    type: EventType
    payload: dict[str, Any]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dict."""
        return self.model_dump(mode="json")


EventCallback = Callable[[RegistryEvent], None] | Callable[[RegistryEvent], Awaitable[None]]


class Subscription:
    """Handle returned by EventBus.subscribe; close() to stop receiving."""

    def __init__(self, bus: "EventBus", callback: EventCallback) -> None:
        self._bus = bus
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._discard(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class EventChannel:
    """
    Queue-backed subscription consumed with ``async for``.

    Events that arrive while the queue is full are dropped for this channel
    only; the publisher never waits on a slow consumer.
    """

    def __init__(self, bus: "EventBus", maxsize: int) -> None:
        self._queue: asyncio.Queue[RegistryEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._subscription = bus.subscribe(self._offer)

    def _offer(self, event: RegistryEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Event channel full, dropping %s event", event.type.value)

    async def get(self) -> RegistryEvent | None:
        """Next event, or None once the channel is closed and drained."""
        if self._subscription.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self._subscription.closed:
            return
        self._subscription.close()
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Consumers see the closed subscription once the queue drains
            pass

    async def __aiter__(self) -> AsyncIterator[RegistryEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class EventBus:
    """
    Publish/subscribe point for registry deltas.

    Usage:
        bus = EventBus()
        sub = bus.subscribe(lambda event: print(event.type))
        await bus.publish(RegistryEvent(type=EventType.TOOL_ADDED, payload={...}))
        sub.close()
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, callback: EventCallback) -> Subscription:
        """
        Register a callback for every future event.

        Args:
            callback: Plain or async function taking a RegistryEvent

        Returns:
            Subscription handle
        """
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def open_channel(self, maxsize: int = 1000) -> EventChannel:
        """Open a queue-backed channel of future events."""
        return EventChannel(self, maxsize)

    def _discard(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: RegistryEvent) -> None:
        """
        Deliver an event to every current subscriber.

        Each subscriber is isolated: an exception in one is logged and the
        remaining subscribers still receive the event.
        """
        for subscription in list(self._subscriptions):
            if subscription.closed:
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event subscriber failed on %s event", event.type.value)
