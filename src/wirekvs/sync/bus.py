"""Fan-out of cache changes to independent subscribers."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

from wirekvs.errors import QueueOverflowError
from wirekvs.sync.protocol import ChangeNotification, GapMarker

logger = logging.getLogger(__name__)

Notification = ChangeNotification | GapMarker

_CLOSED = object()
_ids = itertools.count(1)


class Subscriber:
    """
    Consumer handle with a bounded delivery queue.

    Overflow policy is drop-oldest: the publisher never waits, the oldest
    queued notification is discarded, and the next read yields a
    :class:`GapMarker` counting the dropped items (or raises
    :class:`~wirekvs.errors.QueueOverflowError` when ``raise_on_gap``).

    Usage:
        sub = db.subscribe()
        async for item in sub:
            if isinstance(item, GapMarker):
                entries = await db.get_all_entries()
            else:
                print(item.key, item.value)
    """

    def __init__(
        self,
        bus: SubscriptionBus,
        queue_size: int,
        *,
        raise_on_gap: bool = False,
    ) -> None:
        self.id = next(_ids)
        self._bus = bus
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size + 1)
        self._capacity = queue_size
        self._raise_on_gap = raise_on_gap
        self._missed = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of notifications waiting to be read."""
        return self._queue.qsize()

    def _offer(self, notification: ChangeNotification) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._capacity:
            self._queue.get_nowait()
            self._missed += 1
        self._queue.put_nowait(notification)

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        # One spare slot is reserved for this sentinel
        self._queue.put_nowait(_CLOSED)

    def _take_gap(self) -> GapMarker | None:
        if not self._missed:
            return None
        missed, self._missed = self._missed, 0
        if self._raise_on_gap:
            raise QueueOverflowError(missed)
        return GapMarker(missed=missed)

    async def get(self, timeout: float | None = None) -> Notification:
        """Wait for the next notification.

        Raises:
            StopAsyncIteration: the subscriber has been closed.
            asyncio.TimeoutError: nothing arrived within ``timeout``.
        """
        gap = self._take_gap()
        if gap is not None:
            return gap
        if self._closed and self._queue.empty():
            raise StopAsyncIteration

        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            raise StopAsyncIteration
        # Drops may have happened while we were waiting
        gap = self._take_gap()
        if gap is not None:
            self._requeue_front(item)
            return gap
        return item  # type: ignore[no-any-return]

    def get_nowait(self) -> Notification | None:
        """Return the next notification, or None when nothing is queued."""
        gap = self._take_gap()
        if gap is not None:
            return gap
        if self._queue.empty():
            return None
        item = self._queue.get_nowait()
        if item is _CLOSED:
            return None
        return item  # type: ignore[no-any-return]

    def _requeue_front(self, item: Any) -> None:
        rest: list[Any] = []
        while not self._queue.empty():
            rest.append(self._queue.get_nowait())
        self._queue.put_nowait(item)
        for other in rest:
            self._queue.put_nowait(other)

    def close(self) -> None:
        """Unsubscribe from the bus."""
        self._bus.unsubscribe(self)

    def __aiter__(self) -> Subscriber:
        return self

    async def __anext__(self) -> Notification:
        return await self.get()

    def __enter__(self) -> Subscriber:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class SubscriptionBus:
    """Delivers every applied change to every active subscriber, in order."""

    def __init__(self, default_queue_size: int = 100) -> None:
        self._default_queue_size = default_queue_size
        self._subscribers: dict[int, Subscriber] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        queue_size: int | None = None,
        *,
        raise_on_gap: bool = False,
    ) -> Subscriber:
        """Create a subscriber that receives changes published from now on."""
        size = self._default_queue_size if queue_size is None else queue_size
        if size < 1:
            raise ValueError("queue_size must be >= 1")
        subscriber = Subscriber(self, size, raise_on_gap=raise_on_gap)
        self._subscribers[subscriber.id] = subscriber
        logger.debug("Subscriber %d added (queue size %d)", subscriber.id, size)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a subscriber. No delivery happens after this returns."""
        if self._subscribers.pop(subscriber.id, None) is not None:
            logger.debug("Subscriber %d removed", subscriber.id)
        subscriber._close()

    def publish(self, notification: ChangeNotification) -> None:
        """Offer a change to every subscriber without blocking."""
        for subscriber in list(self._subscribers.values()):
            had_gap = subscriber._missed
            subscriber._offer(notification)
            if subscriber._missed and not had_gap:
                logger.warning("Subscriber %d is falling behind, dropping oldest", subscriber.id)

    def close(self) -> None:
        """Close every subscriber."""
        for subscriber in list(self._subscribers.values()):
            self.unsubscribe(subscriber)
