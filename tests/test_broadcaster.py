"""Broadcaster and subscriber tests."""

import asyncio
import time

import pytest
from structlog.testing import capture_logs

from httpwatch.events.broadcaster import Broadcaster
from httpwatch.exceptions import SubscriberClosedError


def test_subscribe_registers_handle() -> None:
    """Each subscribe call registers a distinct handle."""
    broadcaster = Broadcaster()
    first = broadcaster.subscribe()
    second = broadcaster.subscribe()

    assert first is not second
    assert broadcaster.subscriber_count == 2


def test_publish_without_subscribers() -> None:
    """Publishing with nobody listening delivers to nobody."""
    broadcaster = Broadcaster()
    assert broadcaster.publish("a.txt") == 0


def test_publish_never_blocks_on_full_inboxes() -> None:
    """Publish returns promptly however many inboxes are full."""
    broadcaster = Broadcaster()
    for _ in range(1000):
        broadcaster.subscribe()
    broadcaster.publish("first")

    start = time.perf_counter()
    delivered = broadcaster.publish("second")
    elapsed = time.perf_counter() - start

    assert delivered == 0
    assert elapsed < 1.0
    assert broadcaster.dropped_messages == 1000


@pytest.mark.asyncio
async def test_full_inbox_does_not_affect_other_subscribers() -> None:
    """A subscriber that never drains only loses its own messages."""
    broadcaster = Broadcaster()
    slow = broadcaster.subscribe()
    fast = broadcaster.subscribe()

    assert broadcaster.publish("one") == 2
    assert await fast.receive() == "one"

    assert broadcaster.publish("two") == 1
    assert await fast.receive() == "two"

    assert await slow.receive() == "one"
    assert slow.offer("three") is True
    assert await slow.receive() == "three"


@pytest.mark.asyncio
async def test_delivered_messages_keep_publish_order() -> None:
    """Messages drained between publishes arrive in publish order."""
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()

    received = []
    for name in ["a.txt", "b.txt", "c.txt"]:
        broadcaster.publish(name)
        received.append(await subscriber.receive())

    assert received == ["a.txt", "b.txt", "c.txt"]


@pytest.mark.asyncio
async def test_unsubscribe_closes_inbox() -> None:
    """After unsubscribe, receive observes closure and publish skips it."""
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()

    broadcaster.unsubscribe(subscriber)

    assert subscriber.closed
    assert broadcaster.subscriber_count == 0
    assert broadcaster.publish("a.txt") == 0
    with pytest.raises(SubscriberClosedError):
        await subscriber.receive()


@pytest.mark.asyncio
async def test_unsubscribe_wakes_pending_receive() -> None:
    """A receive waiting on an empty inbox ends when it is closed."""
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()

    pending = asyncio.create_task(subscriber.receive())
    await asyncio.sleep(0)
    broadcaster.unsubscribe(subscriber)

    with pytest.raises(SubscriberClosedError):
        await asyncio.wait_for(pending, timeout=1.0)


@pytest.mark.asyncio
async def test_pending_message_survives_close() -> None:
    """A message already in the slot is still received after closing."""
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    broadcaster.publish("a.txt")

    broadcaster.unsubscribe(subscriber)

    assert await subscriber.receive() == "a.txt"
    with pytest.raises(SubscriberClosedError):
        await subscriber.receive()


@pytest.mark.asyncio
async def test_async_iteration_stops_on_close() -> None:
    """Iterating a subscriber yields messages until it is closed."""
    broadcaster = Broadcaster()
    subscriber = broadcaster.subscribe()
    received: list[str] = []

    async def consume() -> None:
        async for message in subscriber:
            received.append(message)

    consumer = asyncio.create_task(consume())
    for name in ["a.txt", "b.txt"]:
        broadcaster.publish(name)
        await asyncio.sleep(0.01)
    broadcaster.unsubscribe(subscriber)

    await asyncio.wait_for(consumer, timeout=1.0)
    assert received == ["a.txt", "b.txt"]


def test_registry_size_is_logged_on_changes() -> None:
    """Subscribe and unsubscribe log the registry size after the change."""
    broadcaster = Broadcaster()
    with capture_logs() as logs:
        first = broadcaster.subscribe()
        broadcaster.subscribe()
        broadcaster.unsubscribe(first)

    assert [(log["event"], log["subscribers"]) for log in logs] == [
        ("subscriber_added", 1),
        ("subscriber_added", 2),
        ("subscriber_removed", 1),
    ]
