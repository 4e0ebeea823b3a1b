"""Per-client session: a reader and a writer pump around one transport."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from taskpulse.realtime.connection import (
    CLOSE_POLICY_VIOLATION,
    CLOSE_TOO_BIG,
    Connection,
    OutboxClosed,
)
from taskpulse.realtime.events import (
    PING,
    PONG,
    SUBSCRIBE,
    UNSUBSCRIBE,
    Event,
    decode_control,
    encode,
)
from taskpulse.realtime.hub import Hub

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 30.0
DEFAULT_READ_TIMEOUT = 60.0
DEFAULT_MAX_MESSAGE_SIZE = 512


class TransportClosed(Exception):
    """The underlying transport failed or was closed by the peer."""


class Transport(Protocol):
    """What a session needs from a physical connection.

    Implementations raise ``TransportClosed`` for every transport-level
    failure so the pumps only deal with one error type.

    ``native_keepalive`` is True when the server already pings the peer at
    the protocol level and drops it when pongs stop arriving. The session
    then leaves dead-peer detection to the server and applies no read
    deadline of its own.
    """

    native_keepalive: bool

    async def receive_text(self) -> str: ...

    async def send_text(self, data: str) -> None: ...

    async def send_ping(self) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ConnectionSession:
    """Bridges one transport to the hub and enforces liveness.

    The writer owns closing the transport. Whichever pump stops first,
    the connection is unregistered exactly once through the hub.
    """

    def __init__(
        self,
        hub: Hub,
        connection: Connection,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self._hub = hub
        self.connection = connection
        self._ping_interval = ping_interval
        self._read_timeout = read_timeout
        self._max_message_size = max_message_size

    async def run(self) -> None:
        """Register, pump until either side stops, then tear down."""
        conn = self.connection
        self._hub.register(conn)
        reader = asyncio.create_task(self._read_pump(), name=f"ws-reader-{conn.id}")
        writer = asyncio.create_task(self._write_pump(), name=f"ws-writer-{conn.id}")
        try:
            await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            reader.cancel()
            writer.cancel()
            raise
        finally:
            self._hub.unregister(conn)
            if writer.done():
                reader.cancel()
            # Reader stopped first: the writer drains the closed outbox and exits
            await asyncio.gather(reader, writer, return_exceptions=True)
            logger.info("Session ended for %s", conn.user_id)

    # -- writer --

    async def _write_pump(self) -> None:
        conn = self.connection
        loop = asyncio.get_running_loop()
        next_ping = loop.time() + self._ping_interval
        try:
            while True:
                timeout = next_ping - loop.time()
                if timeout <= 0:
                    await conn.transport.send_ping()
                    next_ping = loop.time() + self._ping_interval
                    continue
                try:
                    event = await asyncio.wait_for(conn.outbox.get(), timeout)
                except asyncio.TimeoutError:
                    continue
                except OutboxClosed:
                    break
                try:
                    data = encode(event)
                except (TypeError, ValueError):
                    logger.warning(
                        "Dropping unserializable %s event for %s",
                        event.type,
                        conn.user_id,
                        exc_info=True,
                    )
                    continue
                await conn.transport.send_text(data)
        except TransportClosed as exc:
            logger.info("Write to %s failed: %s", conn.user_id, exc)
        except Exception:
            logger.exception("Writer for %s crashed", conn.user_id)
        finally:
            try:
                await conn.transport.close(conn.close_code)
            except TransportClosed:
                pass

    # -- reader --

    async def _read_pump(self) -> None:
        conn = self.connection
        # Native transports: the server closes dead peers, no read deadline here
        deadline = None if conn.transport.native_keepalive else self._read_timeout
        try:
            while True:
                try:
                    raw = await asyncio.wait_for(
                        conn.transport.receive_text(), deadline
                    )
                except asyncio.TimeoutError:
                    logger.info(
                        "Client %s idle for %.0fs, disconnecting",
                        conn.user_id,
                        self._read_timeout,
                    )
                    return
                size = len(raw.encode("utf-8"))
                if size > self._max_message_size:
                    logger.warning(
                        "Client %s sent %d bytes (limit %d), disconnecting",
                        conn.user_id,
                        size,
                        self._max_message_size,
                    )
                    conn.close_code = CLOSE_TOO_BIG
                    return
                self._handle_control(raw)
        except TransportClosed as exc:
            logger.debug("Read from %s ended: %s", conn.user_id, exc)
        except Exception:
            logger.exception("Reader for %s crashed", conn.user_id)

    def _handle_control(self, raw: str) -> None:
        conn = self.connection
        try:
            msg = decode_control(raw)
        except ValueError:
            logger.warning("Ignoring malformed message from %s: %.64r", conn.user_id, raw)
            return

        if msg.type == PING:
            if not conn.offer(Event(type=PONG)):
                conn.close_code = CLOSE_POLICY_VIOLATION
                self._hub.unregister(conn)
        elif msg.type == PONG:
            pass  # liveness only; the read deadline is already refreshed
        elif msg.type in (SUBSCRIBE, UNSUBSCRIBE):
            if not msg.group_id:
                logger.warning("%s from %s without group_id", msg.type, conn.user_id)
            elif msg.type == SUBSCRIBE:
                self._hub.subscribe(conn, msg.group_id)
            else:
                self._hub.unsubscribe(conn, msg.group_id)
        else:
            logger.warning("Unknown message type from %s: %s", conn.user_id, msg.type)
