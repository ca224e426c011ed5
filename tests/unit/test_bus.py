"""Tests for sync/bus.py: subscriber fan-out and overflow handling."""

from __future__ import annotations

import asyncio

import pytest

from wirekvs.errors import QueueOverflowError
from wirekvs.sync.bus import SubscriptionBus
from wirekvs.sync.protocol import ChangeNotification, GapMarker, Origin


def _change(key: str, value: int = 0, sequence: float = 0) -> ChangeNotification:
    return ChangeNotification(key=key, value=value, sequence=sequence, origin=Origin.REMOTE)


# ─────────── Subscribe / unsubscribe ───────────


class TestSubscribe:
    def test_default_queue_size(self) -> None:
        bus = SubscriptionBus(default_queue_size=3)
        sub = bus.subscribe()
        for i in range(5):
            bus.publish(_change("k", i))
        assert sub.pending == 3

    def test_invalid_queue_size(self) -> None:
        bus = SubscriptionBus()
        with pytest.raises(ValueError):
            bus.subscribe(queue_size=0)

    def test_subscriber_count(self) -> None:
        bus = SubscriptionBus()
        first = bus.subscribe()
        bus.subscribe()
        assert bus.subscriber_count == 2

        bus.unsubscribe(first)
        assert bus.subscriber_count == 1
        assert first.closed

    def test_unsubscribe_twice_is_noop(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe()
        bus.unsubscribe(sub)
        bus.unsubscribe(sub)
        assert bus.subscriber_count == 0

    def test_only_future_changes_delivered(self) -> None:
        bus = SubscriptionBus()
        bus.publish(_change("before"))
        sub = bus.subscribe()
        bus.publish(_change("after"))

        item = sub.get_nowait()
        assert isinstance(item, ChangeNotification)
        assert item.key == "after"
        assert sub.get_nowait() is None

    def test_no_delivery_after_unsubscribe(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe()
        bus.publish(_change("a"))
        sub.close()
        bus.publish(_change("b"))

        assert sub.get_nowait() is None

    def test_context_manager_unsubscribes(self) -> None:
        bus = SubscriptionBus()
        with bus.subscribe() as sub:
            assert bus.subscriber_count == 1
        assert bus.subscriber_count == 0
        assert sub.closed


# ─────────── Delivery ───────────


class TestDelivery:
    @pytest.mark.asyncio
    async def test_order_preserved(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe()
        for i in range(10):
            bus.publish(_change(f"k{i}", i, i))

        received = [await sub.get(timeout=1.0) for _ in range(10)]
        assert [n.key for n in received] == [f"k{i}" for i in range(10)]  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_every_subscriber_gets_every_change(self) -> None:
        bus = SubscriptionBus()
        subs = [bus.subscribe() for _ in range(3)]
        bus.publish(_change("a", 1))
        bus.publish(_change("b", 2))

        for sub in subs:
            first = await sub.get(timeout=1.0)
            second = await sub.get(timeout=1.0)
            assert (first.key, second.key) == ("a", "b")  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_get_waits_for_publish(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe()
        reader = asyncio.ensure_future(sub.get())
        await asyncio.sleep(0.01)
        assert not reader.done()

        bus.publish(_change("a"))
        item = await asyncio.wait_for(reader, timeout=1.0)
        assert item.key == "a"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_get_timeout(self) -> None:
        sub = SubscriptionBus().subscribe()
        with pytest.raises(asyncio.TimeoutError):
            await sub.get(timeout=0.01)

    @pytest.mark.asyncio
    async def test_async_iteration_ends_on_close(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe()
        bus.publish(_change("a"))

        async def _consume() -> list[str]:
            return [item.key async for item in sub]  # type: ignore[union-attr]

        consumer = asyncio.ensure_future(_consume())
        await asyncio.sleep(0.01)
        bus.close()

        assert await asyncio.wait_for(consumer, timeout=1.0) == ["a"]

    @pytest.mark.asyncio
    async def test_close_wakes_blocked_reader(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe()
        reader = asyncio.ensure_future(sub.get())
        await asyncio.sleep(0.01)

        sub.close()
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(reader, timeout=1.0)

    @pytest.mark.asyncio
    async def test_get_after_close_raises(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe()
        bus.close()
        with pytest.raises(StopAsyncIteration):
            await sub.get()


# ─────────── Overflow ───────────


class TestOverflow:
    @pytest.mark.asyncio
    async def test_drop_oldest_with_gap_marker(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe(queue_size=2)
        for i in range(5):
            bus.publish(_change(f"k{i}", i))

        gap = await sub.get(timeout=1.0)
        assert gap == GapMarker(missed=3)

        rest = [await sub.get(timeout=1.0) for _ in range(2)]
        assert [n.key for n in rest] == ["k3", "k4"]  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_raise_on_gap(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe(queue_size=1, raise_on_gap=True)
        bus.publish(_change("a"))
        bus.publish(_change("b"))

        with pytest.raises(QueueOverflowError) as exc_info:
            await sub.get(timeout=1.0)
        assert exc_info.value.missed == 1

        item = await sub.get(timeout=1.0)
        assert item.key == "b"  # type: ignore[union-attr]

    def test_gap_reported_once(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe(queue_size=1)
        bus.publish(_change("a"))
        bus.publish(_change("b"))

        assert isinstance(sub.get_nowait(), GapMarker)
        assert sub.get_nowait().key == "b"  # type: ignore[union-attr]
        assert sub.get_nowait() is None

    def test_slow_subscriber_does_not_affect_others(self) -> None:
        bus = SubscriptionBus()
        slow = bus.subscribe(queue_size=1)
        fast = bus.subscribe(queue_size=10)

        for i in range(5):
            bus.publish(_change(f"k{i}", i))
            assert fast.get_nowait().key == f"k{i}"  # type: ignore[union-attr]

        assert slow.get_nowait() == GapMarker(missed=4)

    @pytest.mark.asyncio
    async def test_gap_while_reader_waits(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe(queue_size=2)
        reader = asyncio.ensure_future(sub.get())
        await asyncio.sleep(0.01)

        # Publish a burst before the reader gets to run
        for i in range(4):
            bus.publish(_change(f"k{i}", i))

        first = await asyncio.wait_for(reader, timeout=1.0)
        assert isinstance(first, GapMarker)
        remaining = [sub.get_nowait() for _ in range(2)]
        assert [n.key for n in remaining] == ["k2", "k3"]  # type: ignore[union-attr]

    def test_publish_never_blocks(self) -> None:
        bus = SubscriptionBus()
        sub = bus.subscribe(queue_size=1)
        for i in range(1000):
            bus.publish(_change("k", i))
        assert sub.pending == 1
