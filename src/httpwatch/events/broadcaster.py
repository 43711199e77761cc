"""In-memory fan-out of change notifications to subscribers."""
import asyncio
import threading
from collections.abc import AsyncIterator

import structlog

from httpwatch.exceptions import SubscriberClosedError

logger = structlog.get_logger()

_CLOSED = object()


class Subscriber:
    """Single-slot inbox owned by one delivery loop.

    A message offered while the slot is occupied is dropped, so a
    subscriber only ever learns that "something changed" since it last
    looked. Must be used from the event loop thread.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=1)
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the inbox has been closed."""
        return self._closed

    def offer(self, message: str) -> bool:
        """Place a message in the inbox without blocking.

        Args:
            message: Notification to deliver.

        Returns:
            True if accepted, False if the slot was full or the inbox closed.
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def receive(self) -> str:
        """Wait for the next message.

        Returns:
            The pending notification.

        Raises:
            SubscriberClosedError: If the inbox is closed and drained.
        """
        if self._closed and self._queue.empty():
            raise SubscriberClosedError("subscriber inbox is closed")

        item = await self._queue.get()
        if item is _CLOSED:
            raise SubscriberClosedError("subscriber inbox is closed")
        return item  # type: ignore[return-value]

    def close(self) -> None:
        """Close the inbox, waking a pending receive.

        A message already sitting in the slot can still be received.
        """
        if self._closed:
            return
        self._closed = True
        if self._queue.empty():
            self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            try:
                yield await self.receive()
            except SubscriberClosedError:
                return


class Broadcaster:
    """Registry of subscribers with a non-blocking publish.

    Knows nothing about filesystems or connections. One instance is
    created per application and handed to the watcher and to every
    websocket handler.
    """

    def __init__(self) -> None:
        self._subscribers: dict[Subscriber, bool] = {}
        self._lock = threading.Lock()
        self._dropped_count = 0

    @property
    def subscriber_count(self) -> int:
        """Number of registered subscribers."""
        with self._lock:
            return len(self._subscribers)

    @property
    def dropped_messages(self) -> int:
        """Messages dropped because a subscriber inbox was full."""
        return self._dropped_count

    def subscribe(self) -> Subscriber:
        """Register a new subscriber.

        Returns:
            Handle whose inbox receives published messages.
        """
        subscriber = Subscriber()
        with self._lock:
            self._subscribers[subscriber] = True
            count = len(self._subscribers)
        logger.debug("subscriber_added", subscribers=count)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a subscriber and close its inbox.

        Each handle must be unsubscribed exactly once by its owner.

        Args:
            subscriber: Handle returned by `subscribe`.
        """
        with self._lock:
            del self._subscribers[subscriber]
            subscriber.close()
            count = len(self._subscribers)
        logger.debug("subscriber_removed", subscribers=count)

    def publish(self, message: str) -> int:
        """Offer a message to every registered subscriber.

        Never blocks: a subscriber whose inbox is still full loses this
        message, other subscribers are unaffected.

        Args:
            message: Notification to fan out.

        Returns:
            Number of subscribers that accepted the message.
        """
        delivered = 0
        with self._lock:
            for subscriber in self._subscribers:
                if subscriber.offer(message):
                    delivered += 1
                else:
                    self._dropped_count += 1
        return delivered
