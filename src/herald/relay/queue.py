"""Notification queue — unbounded FIFO with a one-shot Disconnect sentinel.

Learn: asyncio.Queue() with no maxsize never blocks producers, so the
materializer is never slowed by a stalled webhook; notifications simply
accumulate. Closing the queue enqueues DISCONNECT exactly once and
refuses any chat message after it, which makes shutdown a one-way door.
"""

import asyncio

from herald.schemas.notification import DISCONNECT, Chat, Notification


class QueueClosedError(Exception):
    pass


class NotificationQueue:
    """Multi-producer, single-consumer notification channel."""

    def __init__(self):
        self._queue: asyncio.Queue[Notification] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, msg: Chat) -> None:
        """Enqueue a chat notification (never blocks)."""
        if self._closed:
            raise QueueClosedError("Notification queue already disconnected")
        self._queue.put_nowait(msg)

    def put_many(self, msgs: list[Chat]) -> None:
        for msg in msgs:
            self.put(msg)

    def close(self) -> bool:
        """Enqueue the Disconnect sentinel. Returns False if already closed."""
        if self._closed:
            return False
        self._closed = True
        self._queue.put_nowait(DISCONNECT)
        return True

    async def get(self) -> Notification:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()
