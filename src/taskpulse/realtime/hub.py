"""Broadcast hub: a single asyncio task owns the live connection set.

Request handlers, session readers and the hub's own backpressure policy
all talk to the loop through one FIFO inbox, so registration, membership
changes and dispatch are applied strictly one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from taskpulse.realtime.connection import CLOSE_POLICY_VIOLATION, Connection
from taskpulse.realtime.events import Event
from taskpulse.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

_REGISTER = "register"
_UNREGISTER = "unregister"
_SUBSCRIBE = "subscribe"
_UNSUBSCRIBE = "unsubscribe"
_SUBSCRIBE_USER = "subscribe_user"
_UNSUBSCRIBE_USER = "unsubscribe_user"
_BROADCAST = "broadcast"
_STOP = "stop"


@dataclass
class _Command:
    op: str
    conn: Connection | None = None
    arg: Any = None


class Hub:
    """Routes events to the connections entitled to see them.

    All public methods are non-blocking and return immediately; the work
    happens on the loop started by ``start()``.
    """

    def __init__(self) -> None:
        self._registry = ConnectionRegistry()
        self._inbox: asyncio.Queue[_Command] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    # -- lifecycle --

    def start(self) -> None:
        """Start the dispatch loop as a background task."""
        if self._task and not self._task.done():
            logger.warning("Hub already running")
            return
        self._task = asyncio.create_task(self._loop(), name="realtime-hub")
        logger.info("Realtime hub started")

    async def stop(self) -> None:
        """Process everything already submitted, then close every connection."""
        task = self._task
        if task is None:
            return
        if not task.done():
            self._inbox.put_nowait(_Command(_STOP))
            await task
        self._task = None
        self._discard_pending()
        logger.info("Realtime hub stopped")

    @property
    def running(self) -> bool:
        """Return True if the dispatch loop is active."""
        return self._task is not None and not self._task.done()

    async def drain(self) -> None:
        """Wait until every command submitted so far has been processed.

        Returns immediately when the hub is not running.
        """
        if not self.running:
            return
        await self._inbox.join()

    # -- public contract --

    def register(self, conn: Connection) -> None:
        """Make ``conn`` eligible for subsequently dispatched events.

        A stopped hub refuses the connection by closing its outbox.
        """
        self._submit(_Command(_REGISTER, conn))

    def unregister(self, conn: Connection) -> None:
        """Remove ``conn`` and close its outbox. No-op if already removed."""
        if not self.running:
            # Nothing else can touch the registry; close right away so the
            # session writer is never left waiting.
            self._registry.discard(conn)
            conn.outbox.close()
            return
        self._inbox.put_nowait(_Command(_UNREGISTER, conn))

    def subscribe(self, conn: Connection, group: str) -> None:
        """Add ``group`` to the connection's membership set."""
        self._submit(_Command(_SUBSCRIBE, conn, group))

    def unsubscribe(self, conn: Connection, group: str) -> None:
        """Remove ``group`` from the connection's membership set."""
        self._submit(_Command(_UNSUBSCRIBE, conn, group))

    def subscribe_user(self, user_id: str, group: str) -> None:
        """Add ``group`` to every live connection of ``user_id``.

        Used when a user joins a team while connected.
        """
        self._submit(_Command(_SUBSCRIBE_USER, arg=(user_id, group)))

    def unsubscribe_user(self, user_id: str, group: str) -> None:
        """Remove ``group`` from every live connection of ``user_id``."""
        self._submit(_Command(_UNSUBSCRIBE_USER, arg=(user_id, group)))

    def broadcast(self, event: Event) -> None:
        """Hand ``event`` to the loop. Fire-and-forget, best effort."""
        self._submit(_Command(_BROADCAST, arg=event))

    def stats(self) -> dict:
        """Snapshot for the health endpoint."""
        return {
            "running": self.running,
            "connections": len(self._registry),
            "users": self._registry.user_count(),
            "pending": self._inbox.qsize(),
        }

    def _submit(self, cmd: _Command) -> None:
        if self.running:
            self._inbox.put_nowait(cmd)
            return
        logger.debug("Hub not running, ignoring %s", cmd.op)
        if cmd.op == _REGISTER:
            cmd.conn.outbox.close()

    def _discard_pending(self) -> None:
        """Drop commands queued behind STOP or left by a cancelled loop."""
        while not self._inbox.empty():
            cmd = self._inbox.get_nowait()
            if cmd.op in (_REGISTER, _UNREGISTER):
                cmd.conn.outbox.close()
            self._inbox.task_done()

    # -- main loop --

    async def _loop(self) -> None:
        try:
            while True:
                cmd = await self._inbox.get()
                try:
                    if cmd.op == _STOP:
                        self._close_all()
                        return
                    self._handle(cmd)
                except Exception:
                    logger.exception("Hub failed to process %s command", cmd.op)
                finally:
                    self._inbox.task_done()
        except asyncio.CancelledError:
            self._close_all()
            raise

    def _handle(self, cmd: _Command) -> None:
        conn = cmd.conn
        if cmd.op == _BROADCAST:
            self._dispatch(cmd.arg)
        elif cmd.op == _REGISTER:
            self._registry.add(conn)
            logger.info("Client registered: %s (%d live)", conn.user_id, len(self._registry))
        elif cmd.op == _UNREGISTER:
            if self._registry.discard(conn):
                logger.info("Client unregistered: %s (%d live)", conn.user_id, len(self._registry))
            conn.outbox.close()
        elif cmd.op == _SUBSCRIBE:
            conn.groups.add(cmd.arg)
            logger.debug("Client %s subscribed to %s", conn.user_id, cmd.arg)
        elif cmd.op == _UNSUBSCRIBE:
            conn.groups.discard(cmd.arg)
            logger.debug("Client %s unsubscribed from %s", conn.user_id, cmd.arg)
        elif cmd.op in (_SUBSCRIBE_USER, _UNSUBSCRIBE_USER):
            user_id, group = cmd.arg
            for live in self._registry.snapshot():
                if live.user_id != user_id:
                    continue
                if cmd.op == _SUBSCRIBE_USER:
                    live.groups.add(group)
                else:
                    live.groups.discard(group)
        else:
            logger.warning("Unknown hub command: %s", cmd.op)

    def _dispatch(self, event: Event) -> None:
        delivered = 0
        for conn in self._registry.snapshot():
            if not conn.wants(event):
                continue
            if conn.offer(event):
                delivered += 1
                continue
            # Slow consumer: drop it rather than stall the loop
            logger.warning("Dropping slow client %s: outbox full", conn.user_id)
            conn.close_code = CLOSE_POLICY_VIOLATION
            self._registry.discard(conn)
            conn.outbox.close()
        logger.debug("Dispatched %s to %d client(s)", event.type, delivered)

    def _close_all(self) -> None:
        for conn in self._registry.snapshot():
            self._registry.discard(conn)
            conn.outbox.close()
