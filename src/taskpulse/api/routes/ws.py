"""WebSocket endpoint for live change events."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from taskpulse.api.auth import resolve_token
from taskpulse.db import Repository, get_session
from taskpulse.realtime import Connection, ConnectionSession, TransportClosed
from taskpulse.realtime.connection import CLOSE_UNAUTHORIZED
from taskpulse.realtime.events import PING

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


class StarletteTransport:
    """Adapts a Starlette WebSocket to the session's Transport protocol.

    ASGI gives the application no access to protocol-level ping frames
    (uvicorn sends those itself), so keepalives are ``{"type": "ping"}``
    text frames that clients may answer with ``{"type": "pong"}``.
    uvicorn (see ``run_server``) pings at the protocol level and closes
    peers whose pongs stop, so the transport reports native keepalive.
    """

    native_keepalive = True

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    async def receive_text(self) -> str:
        try:
            message = await self._ws.receive()
        except RuntimeError as exc:
            raise TransportClosed(str(exc)) from exc
        if message["type"] == "websocket.disconnect":
            raise TransportClosed(f"client closed ({message.get('code', 1000)})")
        if message.get("text") is not None:
            return message["text"]
        return (message.get("bytes") or b"").decode("utf-8", errors="replace")

    async def send_text(self, data: str) -> None:
        try:
            await self._ws.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TransportClosed(str(exc) or type(exc).__name__) from exc

    async def send_ping(self) -> None:
        await self.send_text(
            json.dumps({"type": PING, "timestamp": datetime.now(timezone.utc).isoformat()})
        )

    async def close(self, code: int = 1000) -> None:
        if (
            self._ws.application_state == WebSocketState.DISCONNECTED
            or self._ws.client_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self._ws.close(code=code)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TransportClosed(str(exc) or type(exc).__name__) from exc


def _bearer(websocket: WebSocket) -> str:
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ""


async def _ws_authenticate(token: str) -> str | None:
    """Resolve a token to a user id; any lookup failure counts as invalid."""
    try:
        return await resolve_token(token)
    except Exception:
        logger.debug("WebSocket token lookup failed", exc_info=True)
        return None


@router.websocket("/ws")
@router.websocket("/websocket")
async def ws_updates(
    websocket: WebSocket,
    token: str = Query(""),
) -> None:
    """Stream change events the caller is entitled to see.

    Connect: ws://host:port/api/ws?token=<bearer_token>
    (or send ``Authorization: Bearer <token>``). Initial groups are the
    caller's teams; ``subscribe``/``unsubscribe`` frames adjust them.
    """
    user_id = await _ws_authenticate(token or _bearer(websocket))
    if user_id is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason="Unauthorized")
        return

    async with get_session() as s:
        team_ids = await Repository(s).list_team_ids_for_user(user_id)

    await websocket.accept()
    config = websocket.app.state.config
    conn = Connection(
        StarletteTransport(websocket),
        user_id=user_id,
        groups=team_ids,
        queue_size=config.send_queue_size,
    )
    logger.info("WebSocket connected: %s (%d team(s))", user_id, len(team_ids))
    session = ConnectionSession(
        websocket.app.state.hub,
        conn,
        ping_interval=config.ping_interval,
        read_timeout=config.read_timeout,
        max_message_size=config.max_message_size,
    )
    await session.run()
