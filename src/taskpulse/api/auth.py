"""Bearer token authentication. Resolves a token to the caller's user id."""

from __future__ import annotations

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from taskpulse.db.engine import get_session
from taskpulse.db.repository import Repository

_security = HTTPBearer(auto_error=False)


async def resolve_token(token: str) -> str | None:
    """Verify a token against the DB; shared by HTTP and WebSocket auth."""
    if not token:
        return None
    async with get_session() as session:
        return await Repository(session).verify_access_token(token)


async def require_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> str:
    """Validate the bearer token and return the caller identity."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    user_id = await resolve_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id
