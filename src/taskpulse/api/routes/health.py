"""Health and status endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from taskpulse.db import Repository, get_session

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(request: Request) -> dict:
    """Realtime hub status and DB row counts."""
    try:
        async with get_session() as s:
            db_stats: dict = await Repository(s).count_rows()
    except Exception as e:
        db_stats = {"error": str(e)}

    return {
        "status": "ok",
        "realtime": request.app.state.hub.stats(),
        "db_stats": db_stats,
    }
