"""Bounded publish/subscribe channels for sandboxmail.

A ``Fanout`` delivers each published item to every current subscriber.
Each subscriber owns a bounded ``Channel``; when it is full the item is
dropped for that subscriber only, so the publisher never waits on a slow
consumer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Generic, TypeVar

from .constants import FANOUT_CHANNEL_CAPACITY

logger = logging.getLogger("sandboxmail")

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised by ``Channel.get`` once the channel is closed and drained."""


# End-of-stream marker, queued behind the buffered items on close.
_CLOSED = object()


class Channel(Generic[T]):
    """Bounded single-consumer channel with a non-blocking send side.

    Iterating with ``async for`` yields items until the channel is closed
    and every buffered item has been consumed.
    """

    def __init__(self, capacity: int = FANOUT_CHANNEL_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("Channel capacity must be at least 1")
        self.capacity = capacity
        self.dropped = 0
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._marker_queued = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return self._queue.qsize() - self._marker_queued

    def try_send(self, item: T) -> bool:
        """Queue an item without waiting.

        Returns:
            False if the channel is closed or full; the item is dropped.
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def get_nowait(self) -> T | None:
        """Return the next buffered item, or None when empty."""
        if not len(self):
            return None
        return self._queue.get_nowait()

    async def get(self) -> T:
        """Wait for the next item.

        Raises:
            ChannelClosed: If the channel is closed and drained.
        """
        if len(self):
            return self._queue.get_nowait()
        if self._closed:
            raise ChannelClosed()
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiting reader.
            self._queue.put_nowait(item)
            raise ChannelClosed()
        return item

    def close(self) -> None:
        """Close the channel; buffered items can still be consumed."""
        if self._closed:
            return
        self._closed = True
        # A full queue has no waiting reader to wake.
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            return
        self._marker_queued = True

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except ChannelClosed:
            raise StopAsyncIteration from None


class Subscription(Generic[T]):
    """Receive handle returned by ``Fanout.subscribe``.

    ``cancel`` detaches the channel from the fanout and closes it. The
    subscription is also an async context manager that cancels on exit.
    """

    def __init__(self, fanout: Fanout[T], channel: Channel[T]) -> None:
        self._fanout = fanout
        self.channel = channel

    @property
    def closed(self) -> bool:
        return self.channel.closed

    @property
    def dropped(self) -> int:
        return self.channel.dropped

    def cancel(self) -> None:
        self._fanout._remove(self.channel)

    async def get(self) -> T:
        return await self.channel.get()

    def __aiter__(self) -> AsyncIterator[T]:
        return self.channel.__aiter__()

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.cancel()


class Fanout(Generic[T]):
    """Ordered registry of subscriber channels for one producer."""

    def __init__(self, capacity: int = FANOUT_CHANNEL_CAPACITY) -> None:
        self._capacity = capacity
        self._channels: list[Channel[T]] = []
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._channels)

    def subscribe(self) -> Subscription[T]:
        """Register a new subscriber.

        Subscribing to a closed fanout returns an already closed channel.
        """
        channel: Channel[T] = Channel(self._capacity)
        if self._closed:
            channel.close()
        else:
            self._channels.append(channel)
        return Subscription(self, channel)

    def publish(self, item: T) -> int:
        """Send an item to every subscriber without blocking.

        Returns:
            Number of subscribers that accepted the item.
        """
        delivered = 0
        for channel in list(self._channels):
            if channel.try_send(item):
                delivered += 1
            elif not channel.closed:
                self.dropped += 1
                logger.debug("Dropped event for slow subscriber (capacity %d)", channel.capacity)
        return delivered

    def close(self) -> None:
        """Close and remove every subscriber. Later subscribers get closed channels."""
        self._closed = True
        channels, self._channels = self._channels, []
        for channel in channels:
            channel.close()

    def _remove(self, channel: Channel[T]) -> None:
        if channel in self._channels:
            self._channels.remove(channel)
        channel.close()
