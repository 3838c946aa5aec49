"""Per-channel listener registry used for fan-out to connected clients."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

_logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256


def _normalize_channel(channel: str) -> str:
    return channel.strip().lower()


class Subscription:
    """One listener on one channel; iterate it to receive messages."""

    def __init__(self, channel: str, *, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.channel = channel
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, message: dict[str, Any]) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a pending reader; drop the oldest item if the queue is full.
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def get(self) -> dict[str, Any] | None:
        """Next message, or ``None`` once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            message = await self.get()
            if message is None:
                return
            yield message


class ChannelRegistry:
    """Explicit registry of active listeners per channel.

    Owned by the process and passed by reference to every component that
    needs to fan messages out. The last broadcast per channel is kept so
    late subscribers can catch up.
    """

    def __init__(self, *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._listeners: dict[str, set[Subscription]] = {}
        self._recent: dict[str, dict[str, Any]] = {}

    def open(self, channel: str) -> Subscription:
        key = _normalize_channel(channel)
        subscription = Subscription(key, maxsize=self._queue_size)
        self._listeners.setdefault(key, set()).add(subscription)
        _logger.info("Client connected to %s. Total: %d", key, len(self._listeners[key]))
        return subscription

    def close(self, subscription: Subscription) -> None:
        subscription._close()  # noqa: SLF001
        listeners = self._listeners.get(subscription.channel)
        if listeners is None or subscription not in listeners:
            return
        listeners.discard(subscription)
        _logger.info("Client disconnected from %s. Total: %d", subscription.channel, len(listeners))
        if not listeners:
            del self._listeners[subscription.channel]

    def broadcast(self, channel: str, message: dict[str, Any]) -> int:
        """Deliver *message* to every listener of *channel*.

        Listeners whose queue is full are disconnected. Returns the number of
        listeners that received the message.
        """
        key = _normalize_channel(channel)
        self._recent[key] = message
        delivered = 0
        for subscription in list(self._listeners.get(key, ())):
            if subscription._offer(message):  # noqa: SLF001
                delivered += 1
            else:
                _logger.warning("Dropping slow client on %s", key)
                self.close(subscription)
        return delivered

    def recent(self, channel: str) -> dict[str, Any] | None:
        return self._recent.get(_normalize_channel(channel))

    def client_count(self, channel: str) -> int:
        return len(self._listeners.get(_normalize_channel(channel), ()))

    def close_all(self) -> None:
        for listeners in list(self._listeners.values()):
            for subscription in list(listeners):
                self.close(subscription)
