"""Progress channel: one producer (the executor), any number of consumers."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from flowmend.core.types import ProgressUpdate

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressUpdate], Awaitable[None]]

_CLOSED = object()


class Subscription:
    """
    A bounded queue of updates.

    When the consumer falls behind, the oldest pending update is dropped;
    every update carries the full log so far, so only the newest matters.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(maxsize, 1))
        self.dropped = 0

    def _offer(self, item: object) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    async def get(self) -> ProgressUpdate | None:
        """Next update, or None once the channel is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ProgressUpdate]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressUpdate]:
        while True:
            update = await self.get()
            if update is None:
                return
            yield update


class ProgressChannel:
    """Fan-out of ProgressUpdates to queue subscribers and async listeners."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._listeners: list[ProgressListener] = []
        self._pending: set[asyncio.Task] = set()
        self._closed = False

    def subscribe(self, maxsize: int = 100) -> Subscription:
        sub = Subscription(maxsize=maxsize)
        if self._closed:
            sub._offer(_CLOSED)
        else:
            self._subscriptions.append(sub)
        return sub

    def add_listener(self, listener: ProgressListener) -> None:
        """Register an ``on_update`` coroutine. Its failures never reach the producer."""
        self._listeners.append(listener)

    def publish(self, update: ProgressUpdate) -> None:
        """Non-blocking; safe to call from the executor's hot path."""
        if self._closed:
            return
        for sub in self._subscriptions:
            sub._offer(update)
        for listener in self._listeners:
            task = asyncio.ensure_future(self._notify(listener, update))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _notify(listener: ProgressListener, update: ProgressUpdate) -> None:
        try:
            await listener(update)
        except Exception as exc:
            logger.debug("Progress listener failed for run %s: %s", update.run_id, exc)

    async def drain(self) -> None:
        """Wait for in-flight listener notifications."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            sub._offer(_CLOSED)
