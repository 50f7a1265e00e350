"""
Tests for the event fan-out.
"""

import asyncio

import pytest

from fs_gateway.esl.frame import Event
from fs_gateway.events.dispatcher import EventDispatcher

def make_event(name: str, **headers: str) -> Event:
    return Event({"Event-Name": name, **headers})

class TestEventDispatcher:
    """Test subscription filtering, bounded queues and shutdown."""

    @pytest.mark.asyncio
    async def test_publish_reaches_all_subscribers(self):
        dispatcher = EventDispatcher()
        first = dispatcher.subscribe()
        second = dispatcher.subscribe()

        assert dispatcher.publish(make_event("CHANNEL_CREATE")) == 2

        assert (await first.get()).name == "CHANNEL_CREATE"
        assert (await second.get()).name == "CHANNEL_CREATE"

    @pytest.mark.asyncio
    async def test_filter_by_event_name(self):
        dispatcher = EventDispatcher()
        hangups = dispatcher.subscribe(["channel_hangup"])

        assert dispatcher.publish(make_event("CHANNEL_CREATE")) == 0
        assert dispatcher.publish(make_event("CHANNEL_HANGUP")) == 1

        assert (await hangups.get()).name == "CHANNEL_HANGUP"
        assert dispatcher.stats["discarded"] == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        dispatcher = EventDispatcher(queue_size=2)
        subscription = dispatcher.subscribe()

        for i in range(3):
            dispatcher.publish(make_event("CUSTOM", Seq=str(i)))

        assert subscription.dropped == 1
        assert (await subscription.get()).headers["Seq"] == "1"
        assert (await subscription.get()).headers["Seq"] == "2"

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        dispatcher = EventDispatcher()
        subscription = dispatcher.subscribe()
        dispatcher.publish(make_event("HEARTBEAT"))

        async def consume():
            return [event.name async for event in subscription]

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        dispatcher.close()

        assert await asyncio.wait_for(task, 1) == ["HEARTBEAT"]
        assert dispatcher.subscriber_count == 0
        assert await subscription.get() is None

    def test_context_manager_unsubscribes(self):
        dispatcher = EventDispatcher()

        with dispatcher.subscribe():
            assert dispatcher.subscriber_count == 1

        assert dispatcher.subscriber_count == 0
