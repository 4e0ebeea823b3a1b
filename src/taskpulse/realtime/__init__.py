"""Real-time broadcast hub for live WebSocket clients."""

from taskpulse.realtime.connection import Connection, Outbox, OutboxClosed, OutboxFull
from taskpulse.realtime.events import Event
from taskpulse.realtime.hub import Hub
from taskpulse.realtime.notifier import Notifier
from taskpulse.realtime.registry import ConnectionRegistry
from taskpulse.realtime.session import ConnectionSession, Transport, TransportClosed

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionSession",
    "Event",
    "Hub",
    "Notifier",
    "Outbox",
    "OutboxClosed",
    "OutboxFull",
    "Transport",
    "TransportClosed",
]
