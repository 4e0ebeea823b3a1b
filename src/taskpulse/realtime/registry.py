"""Bookkeeping of live connections. Owned by the hub loop."""

from __future__ import annotations

from taskpulse.realtime.connection import Connection


class ConnectionRegistry:
    """Set of live connections. No locking: only the hub loop mutates it."""

    def __init__(self) -> None:
        self._connections: dict[int, Connection] = {}

    def add(self, conn: Connection) -> None:
        self._connections[conn.id] = conn

    def discard(self, conn: Connection) -> bool:
        """Remove a connection. Returns True if it was present."""
        return self._connections.pop(conn.id, None) is not None

    def snapshot(self) -> list[Connection]:
        """Connections in registration order, safe to iterate while mutating."""
        return list(self._connections.values())

    def user_count(self) -> int:
        return len({c.user_id for c in self._connections.values()})

    def __contains__(self, conn: object) -> bool:
        return isinstance(conn, Connection) and self._connections.get(conn.id) is conn

    def __len__(self) -> int:
        return len(self._connections)
