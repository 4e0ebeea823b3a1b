"""taskpulse: collaborative todo backend with real-time change events.

Library API::

    from taskpulse import Config, create_api

    app = create_api(Config(database_url="sqlite+aiosqlite:///todos.db"))

Producers inside the process broadcast through the app's hub::

    from taskpulse import Event

    app.state.hub.broadcast(Event(type="notification", payload={...}, target_user="alice"))
"""

from __future__ import annotations

from taskpulse.api.app import create_api, run_server
from taskpulse.config import Config
from taskpulse.realtime import Event, Hub

__all__ = ["Config", "Event", "Hub", "create_api", "run_server"]

__version__ = "0.1.0"
