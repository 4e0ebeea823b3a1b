"""Team and membership endpoints."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from taskpulse.api.auth import require_user
from taskpulse.db import Repository, get_session
from taskpulse.db.models import ROLE_ADMIN, ROLE_MEMBER, ROLE_OWNER
from taskpulse.permissions import has_team_role
from taskpulse.serializers import serialize_member, serialize_team

router = APIRouter(prefix="/teams", tags=["teams"])


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""


class MemberAdd(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)
    role: Literal["member", "admin"] = ROLE_MEMBER


@router.get("")
async def list_teams(request: Request, user_id: str = Depends(require_user)) -> list[dict]:
    """Teams the caller belongs to."""
    async with get_session() as s:
        teams = await Repository(s).list_teams_for_user(user_id)
    return [serialize_team(t) for t in teams]


@router.post("", status_code=201)
async def create_team(
    body: TeamCreate,
    request: Request,
    user_id: str = Depends(require_user),
) -> dict:
    async with get_session() as s:
        team = await Repository(s).create_team(
            body.name, created_by=user_id, description=body.description
        )

    # The creator's open connections start following the new team
    request.app.state.hub.subscribe_user(user_id, team.id)
    request.app.state.notifier.team_update(team, "created")
    return serialize_team(team)


@router.get("/{team_id}/members")
async def list_members(
    team_id: str,
    request: Request,
    user_id: str = Depends(require_user),
) -> list[dict]:
    async with get_session() as s:
        repo = Repository(s)
        if await repo.get_team(team_id) is None:
            raise HTTPException(status_code=404, detail="Team not found")
        if not await has_team_role(repo, team_id, user_id, ROLE_MEMBER):
            raise HTTPException(status_code=403, detail="Not a member of this team")
        members = await repo.list_members(team_id)
    return [serialize_member(m) for m in members]


@router.post("/{team_id}/members", status_code=201)
async def add_member(
    team_id: str,
    body: MemberAdd,
    request: Request,
    user_id: str = Depends(require_user),
) -> dict:
    """Add a user to the team (admin or owner only)."""
    async with get_session() as s:
        repo = Repository(s)
        team = await repo.get_team(team_id)
        if team is None:
            raise HTTPException(status_code=404, detail="Team not found")
        if not await has_team_role(repo, team_id, user_id, ROLE_ADMIN):
            raise HTTPException(status_code=403, detail="Team admin role required")
        existing = await repo.get_member(team_id, body.user_id)
        if existing is not None and existing.role == ROLE_OWNER:
            raise HTTPException(status_code=409, detail="Cannot change the owner's role")
        member = await repo.add_member(team_id, body.user_id, body.role)

    hub = request.app.state.hub
    notifier = request.app.state.notifier
    hub.subscribe_user(body.user_id, team_id)
    notifier.team_update(team, "member_added")
    notifier.user_notification(
        body.user_id, "team_invite", f"You were added to team '{team.name}'"
    )
    return serialize_member(member)


@router.delete("/{team_id}/members/{member_id}", status_code=204)
async def remove_member(
    team_id: str,
    member_id: str,
    request: Request,
    user_id: str = Depends(require_user),
) -> None:
    """Remove a member. Admins remove others; anyone may leave."""
    async with get_session() as s:
        repo = Repository(s)
        team = await repo.get_team(team_id)
        if team is None:
            raise HTTPException(status_code=404, detail="Team not found")
        if member_id != user_id and not await has_team_role(repo, team_id, user_id, ROLE_ADMIN):
            raise HTTPException(status_code=403, detail="Team admin role required")
        member = await repo.get_member(team_id, member_id)
        if member is None:
            raise HTTPException(status_code=404, detail="Member not found")
        if member.role == ROLE_OWNER:
            raise HTTPException(status_code=409, detail="The team owner cannot be removed")
        await repo.remove_member(team_id, member_id)

    # Broadcast first so the leaving user still sees the change
    request.app.state.notifier.team_update(team, "member_removed")
    request.app.state.hub.unsubscribe_user(member_id, team_id)
