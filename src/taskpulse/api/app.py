"""FastAPI application factory and server startup."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskpulse.config import Config
from taskpulse.db import close_db, init_db
from taskpulse.realtime import Hub, Notifier

logger = logging.getLogger(__name__)


def create_api(config: Config | None = None, hub: Hub | None = None) -> FastAPI:
    """Create the FastAPI app with its realtime hub.

    The lifespan opens the database and runs the hub; on shutdown the hub
    closes every live connection before the database is released.
    """
    config = config or Config()
    hub = hub or Hub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(config.resolved_database_url)
        hub.start()
        try:
            yield
        finally:
            await hub.stop()
            await close_db()

    app = FastAPI(
        title="taskpulse",
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    # Shared references for route handlers
    app.state.config = config
    app.state.hub = hub
    app.state.notifier = Notifier(hub)

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_methods=["GET", "POST", "PATCH", "DELETE"],
            allow_headers=["*"],
        )

    from taskpulse.api.routes import health, teams, todos, ws

    app.include_router(health.router, prefix="/api")
    app.include_router(todos.router, prefix="/api")
    app.include_router(teams.router, prefix="/api")
    # WebSocket handles its own auth via query param or header
    app.include_router(ws.router, prefix="/api")

    return app


def run_server(config: Config) -> None:
    """Serve the API with uvicorn (blocking)."""
    import uvicorn

    app = create_api(config)
    logger.info("Listening on %s:%d", config.host, config.port)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        access_log=False,
        # Protocol-level keepalive alongside the session's own ping frames
        ws_ping_interval=config.ping_interval,
        ws_ping_timeout=config.read_timeout - config.ping_interval,
        ws_max_size=config.max_message_size,
    )
