"""A live client connection and its bounded outbound queue."""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from typing import TYPE_CHECKING, Iterable

from taskpulse.realtime.events import Event

if TYPE_CHECKING:
    from taskpulse.realtime.session import Transport

DEFAULT_QUEUE_SIZE = 256

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008
CLOSE_TOO_BIG = 1009
CLOSE_UNAUTHORIZED = 4001

_ids = itertools.count(1)


class OutboxFull(Exception):
    """The outbox is at capacity (slow consumer)."""


class OutboxClosed(Exception):
    """The outbox was closed and, on the reading side, fully drained."""


class Outbox:
    """Bounded FIFO that can be closed.

    Any number of producers push without blocking; exactly one consumer
    (the session writer) awaits ``get()``. After ``close()`` the consumer
    still receives everything already buffered, then ``OutboxClosed``.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self.maxsize = maxsize
        self._items: deque[Event] = deque()
        self._closed = False
        self._ready = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return len(self._items)

    def full(self) -> bool:
        return len(self._items) >= self.maxsize

    def put_nowait(self, item: Event) -> None:
        if self._closed:
            raise OutboxClosed()
        if self.full():
            raise OutboxFull()
        self._items.append(item)
        self._ready.set()

    def close(self) -> None:
        """Stop accepting items and wake the consumer. Idempotent."""
        self._closed = True
        self._ready.set()

    async def get(self) -> Event:
        while True:
            if self._items:
                return self._items.popleft()
            if self._closed:
                raise OutboxClosed()
            self._ready.clear()
            await self._ready.wait()


class Connection:
    """One live client session as seen by the hub.

    ``user_id`` never changes. ``groups`` is only mutated on the hub loop
    (initial value aside), so dispatch reads it without locking.
    """

    def __init__(
        self,
        transport: Transport,
        user_id: str,
        groups: Iterable[str] = (),
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.id = next(_ids)
        self.transport = transport
        self.user_id = user_id
        self.groups: set[str] = set(groups)
        self.outbox = Outbox(queue_size)
        # Close code the writer uses when it sends the final close frame
        self.close_code = CLOSE_NORMAL

    def wants(self, event: Event) -> bool:
        """Delivery predicate: user target, then group target, else global."""
        if event.target_user:
            return event.target_user == self.user_id
        if event.target_group:
            return event.target_group in self.groups
        return True

    def offer(self, event: Event) -> bool:
        """Push without blocking. False if the outbox is full or closed."""
        try:
            self.outbox.put_nowait(event)
        except (OutboxFull, OutboxClosed):
            return False
        return True

    def __repr__(self) -> str:
        """Return developer-friendly representation of Connection."""
        return f"<Connection #{self.id} user={self.user_id!r} groups={len(self.groups)}>"
