"""Event values fanned out by the hub, and their wire encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

# Domain event types (server -> client)
TODO_UPDATE = "todo_update"
TEAM_UPDATE = "team_update"
NOTIFICATION = "notification"

# Liveness and control types (both directions)
PING = "ping"
PONG = "pong"
SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _utc_iso(dt: datetime) -> str:
    """Serialize a datetime as UTC ISO-8601 (RFC 3339)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class Event:
    """One change notification, submitted once and fanned out by the hub.

    ``target_user`` wins over ``target_group``; with neither set the event
    is global and reaches every live connection.
    """

    type: str
    payload: Any = None
    target_user: str | None = None
    target_group: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_global(self) -> bool:
        """True if the event has no user or group target."""
        return not self.target_user and not self.target_group

    def to_wire(self) -> dict:
        """Server -> client message shape."""
        msg: dict[str, Any] = {"type": self.type, "payload": self.payload}
        if self.target_user:
            msg["user_id"] = self.target_user
        msg["timestamp"] = _utc_iso(self.created_at)
        return msg


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return _utc_iso(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode(event: Event) -> str:
    """Encode an event as a JSON text frame.

    Raises:
        TypeError, ValueError: if the payload cannot be serialized.
    """
    return json.dumps(event.to_wire(), default=_json_default)


@dataclass
class ControlMessage:
    """A decoded client -> server control frame."""

    type: str
    group_id: str | None = None


def decode_control(raw: str) -> ControlMessage:
    """Parse a client control frame.

    Raises:
        ValueError: on invalid JSON or a frame without a string ``type``.
    """
    data = json.loads(raw)  # JSONDecodeError is a ValueError
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise ValueError("control message must be an object with a string 'type'")
    group_id = None
    payload = data.get("payload")
    if isinstance(payload, dict):
        # Older clients name the group "team_id"
        for key in ("group_id", "team_id"):
            if isinstance(payload.get(key), str):
                group_id = payload[key]
                break
    return ControlMessage(type=data["type"], group_id=group_id)
