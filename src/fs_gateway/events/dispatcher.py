# src/fs_gateway/events/dispatcher.py
"""
This module implements the event fan-out for unsolicited switch events.
Events that do not complete a background job are offered to every subscriber
whose filter matches. Subscribers consume at their own pace from a bounded queue.
"""

import asyncio
from typing import Iterable, Optional, Set

from ..esl.frame import Event
from ..utils.logger import get_logger

logger = get_logger(__name__)

class EventSubscription:
    """
    A subscriber's view of the event stream.
    Supports ``await subscription.get()`` and ``async for event in subscription``.
    """

    def __init__(
        self,
        dispatcher: "EventDispatcher",
        event_names: Optional[Iterable[str]] = None,
        queue_size: int = 1000
    ):
        self._dispatcher = dispatcher
        # None means every event
        self.event_names: Optional[Set[str]] = (
            {name.upper() for name in event_names} if event_names else None
        )
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0
        self.closed = False

    def matches(self, event: Event) -> bool:
        if self.event_names is None:
            return True
        return (event.name or "").upper() in self.event_names

    def offer(self, event: Optional[Event]) -> None:
        """Queue an event without blocking, dropping the oldest one when full."""
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning("Event subscriber queue full, oldest event dropped",
                           dropped=self.dropped)
        self._queue.put_nowait(event)

    async def get(self) -> Optional[Event]:
        """
        Wait for the next event.

        Returns:
            The event, or None once the subscription has been closed
        """
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._dispatcher.unsubscribe(self)
        # Wake up a pending get()
        self.offer(None)

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> Event:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __enter__(self) -> "EventSubscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

class EventDispatcher:
    """
    Central event dispatcher that distributes switch events to subscribers.
    Publishing never blocks the connection's reader loop.
    """

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._subscriptions: Set[EventSubscription] = set()
        self.stats = {"published": 0, "delivered": 0, "discarded": 0}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, event_names: Optional[Iterable[str]] = None) -> EventSubscription:
        """
        Register a new subscriber.

        Args:
            event_names: Event-Name values to receive, or None for all events

        Returns:
            The subscription; close it (or use it as a context manager) when done
        """
        subscription = EventSubscription(self, event_names, self.queue_size)
        self._subscriptions.add(subscription)
        logger.debug("Event subscriber registered",
                     events=sorted(subscription.event_names or []) or "all",
                     subscribers=len(self._subscriptions))
        return subscription

    def unsubscribe(self, subscription: EventSubscription) -> None:
        self._subscriptions.discard(subscription)
        logger.debug("Event subscriber removed", subscribers=len(self._subscriptions))

    def publish(self, event: Event) -> int:
        """
        Offer an event to every matching subscriber.

        Returns:
            Number of subscribers that received the event
        """
        self.stats["published"] += 1
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.offer(event)
                delivered += 1
        if delivered:
            self.stats["delivered"] += delivered
        else:
            self.stats["discarded"] += 1
        return delivered

    def close(self) -> None:
        """Close every subscription."""
        for subscription in list(self._subscriptions):
            subscription.close()
