"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import json
from typing import Callable, Iterable

import pytest

from taskpulse.realtime import Connection, Hub, TransportClosed


class FakeTransport:
    """In-memory transport. Push frames into ``incoming``; ``None`` means the peer closed."""

    def __init__(self, native_keepalive: bool = False) -> None:
        self.native_keepalive = native_keepalive
        self.incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[str] = []
        self.pings = 0
        self.close_calls = 0
        self.closed_with: int | None = None
        self.fail_send = False

    async def receive_text(self) -> str:
        item = await self.incoming.get()
        if item is None:
            raise TransportClosed("peer closed")
        return item

    async def send_text(self, data: str) -> None:
        if self.fail_send or self.closed_with is not None:
            raise TransportClosed("send failed")
        self.sent.append(data)

    async def send_ping(self) -> None:
        if self.fail_send or self.closed_with is not None:
            raise TransportClosed("ping failed")
        self.pings += 1

    async def close(self, code: int = 1000) -> None:
        self.close_calls += 1
        self.closed_with = code
        # A closed socket wakes up any pending read
        self.incoming.put_nowait(None)

    def messages(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]


@pytest.fixture
async def hub():
    """A running hub, stopped after the test."""
    h = Hub()
    h.start()
    yield h
    await h.stop()


@pytest.fixture
def make_conn() -> Callable[..., Connection]:
    """Build a Connection over a FakeTransport."""

    def _make(user_id: str, groups: Iterable[str] = (), queue_size: int = 256) -> Connection:
        return Connection(FakeTransport(), user_id, groups, queue_size=queue_size)

    return _make


@pytest.fixture
def eventually():
    """Poll a predicate until it holds or the timeout expires."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait


@pytest.fixture
def take():
    """Take everything currently buffered in a connection's outbox."""

    def _take(conn: Connection) -> list:
        items = list(conn.outbox._items)
        conn.outbox._items.clear()
        return items

    return _take
