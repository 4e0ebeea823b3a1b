"""Todo CRUD, filtering and sharing endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator

from taskpulse.api.auth import require_user
from taskpulse.db import Repository, TodoFilter, get_session
from taskpulse.db.models import ROLE_MEMBER, STATUS_COMPLETED
from taskpulse.permissions import (
    can_delete_todo,
    can_edit_todo,
    can_view_todo,
    has_team_role,
)
from taskpulse.serializers import serialize_todo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/todos", tags=["todos"])

Status = Literal["not_started", "in_progress", "completed"]
Priority = Literal["low", "medium", "high", "urgent"]


class TodoCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    priority: Priority = "medium"
    due_date: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    team_id: str | None = None
    assigned_to: str | None = None


class TodoUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    status: Status | None = None
    priority: Priority | None = None
    due_date: datetime | None = None
    tags: list[str] | None = None
    assigned_to: str | None = None

    @field_validator("title", "description", "status", "priority")
    @classmethod
    def reject_null(cls, v):
        """These columns may be omitted but never cleared."""
        if v is None:
            raise ValueError("may not be null")
        return v


class ShareRequest(BaseModel):
    team_id: str


async def _assignee_in_team(repo: Repository, todo) -> bool:
    if not (todo.team_id and todo.assigned_to):
        return False
    return await has_team_role(repo, todo.team_id, todo.assigned_to, ROLE_MEMBER)


def _notify_assignee(request: Request, todo, actor: str) -> None:
    if todo.assigned_to and todo.assigned_to != actor:
        request.app.state.notifier.user_notification(
            todo.assigned_to,
            "todo_assigned",
            f"{actor} assigned you '{todo.title}'",
        )


@router.get("")
async def list_todos(
    request: Request,
    user_id: str = Depends(require_user),
    status: list[Status] = Query([]),
    priority: list[Priority] = Query([]),
    team_id: str | None = Query(None),
    assigned_to: str | None = Query(None),
    tag: str | None = Query(None),
    q: str | None = Query(None, max_length=200),
    due_from: datetime | None = Query(None),
    due_to: datetime | None = Query(None),
    sort_by: Literal[
        "created_at", "updated_at", "due_date", "priority", "status", "title"
    ] = Query("created_at"),
    order: Literal["asc", "desc"] = Query("desc"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> dict:
    """Todos visible to the caller, filtered, sorted and paged."""
    flt = TodoFilter(
        visible_to=user_id,
        statuses=list(status),
        priorities=list(priority),
        team_id=team_id,
        assigned_to=assigned_to,
        tag=tag,
        search=q,
        due_from=due_from,
        due_to=due_to,
        sort_by=sort_by,
        descending=order == "desc",
        page=page,
        page_size=page_size,
    )
    async with get_session() as s:
        todos, total = await Repository(s).list_todos(flt)
    return {
        "items": [serialize_todo(t) for t in todos],
        "total": total,
        "page": page,
        "page_size": page_size,
        "has_next": page * page_size < total,
    }


@router.post("", status_code=201)
async def create_todo(
    body: TodoCreate,
    request: Request,
    user_id: str = Depends(require_user),
) -> dict:
    """Create a todo; team todos require membership in that team."""
    async with get_session() as s:
        repo = Repository(s)
        if body.team_id is not None:
            if await repo.get_team(body.team_id) is None:
                raise HTTPException(status_code=404, detail="Team not found")
            if not await has_team_role(repo, body.team_id, user_id, ROLE_MEMBER):
                raise HTTPException(status_code=403, detail="Not a member of this team")
        todo = await repo.create_todo(user_id=user_id, **body.model_dump())
        in_team = await _assignee_in_team(repo, todo)

    request.app.state.notifier.todo_update(todo, "created", assignee_in_team=in_team)
    _notify_assignee(request, todo, user_id)
    return serialize_todo(todo)


@router.get("/{todo_id}")
async def get_todo(
    todo_id: str,
    request: Request,
    user_id: str = Depends(require_user),
) -> dict:
    async with get_session() as s:
        repo = Repository(s)
        todo = await repo.get_todo(todo_id)
        if todo is None:
            raise HTTPException(status_code=404, detail="Todo not found")
        if not await can_view_todo(repo, todo, user_id):
            raise HTTPException(status_code=403, detail="Access denied")
    return serialize_todo(todo)


@router.patch("/{todo_id}")
async def update_todo(
    todo_id: str,
    body: TodoUpdate,
    request: Request,
    user_id: str = Depends(require_user),
) -> dict:
    """Partial update. Only fields present in the body are changed."""
    fields = body.model_dump(exclude_unset=True)
    async with get_session() as s:
        repo = Repository(s)
        todo = await repo.get_todo(todo_id)
        if todo is None:
            raise HTTPException(status_code=404, detail="Todo not found")
        if not await can_edit_todo(repo, todo, user_id):
            raise HTTPException(status_code=403, detail="Access denied")
        previous_assignee = todo.assigned_to
        todo = await repo.update_todo(todo_id, **fields)
        in_team = await _assignee_in_team(repo, todo)

    if set(fields) == {"status"}:
        action = "completed" if todo.status == STATUS_COMPLETED else "status_changed"
    else:
        action = "updated"
    request.app.state.notifier.todo_update(todo, action, assignee_in_team=in_team)
    if todo.assigned_to != previous_assignee:
        _notify_assignee(request, todo, user_id)
    return serialize_todo(todo)


@router.delete("/{todo_id}", status_code=204)
async def delete_todo(
    todo_id: str,
    request: Request,
    user_id: str = Depends(require_user),
) -> None:
    async with get_session() as s:
        repo = Repository(s)
        todo = await repo.get_todo(todo_id)
        if todo is None:
            raise HTTPException(status_code=404, detail="Todo not found")
        if not await can_delete_todo(repo, todo, user_id):
            raise HTTPException(status_code=403, detail="Only the owner or a team admin can delete")
        in_team = await _assignee_in_team(repo, todo)
        await repo.delete_todo(todo_id)

    request.app.state.notifier.todo_update(todo, "deleted", assignee_in_team=in_team)


@router.post("/{todo_id}/share")
async def share_todo(
    todo_id: str,
    body: ShareRequest,
    request: Request,
    user_id: str = Depends(require_user),
) -> dict:
    """Share an owned todo with a team the caller belongs to."""
    async with get_session() as s:
        repo = Repository(s)
        todo = await repo.get_todo(todo_id)
        if todo is None:
            raise HTTPException(status_code=404, detail="Todo not found")
        if todo.user_id != user_id:
            raise HTTPException(status_code=403, detail="Only the owner can share a todo")
        if await repo.get_team(body.team_id) is None:
            raise HTTPException(status_code=404, detail="Team not found")
        if not await has_team_role(repo, body.team_id, user_id, ROLE_MEMBER):
            raise HTTPException(status_code=403, detail="Not a member of this team")
        todo = await repo.share_todo(todo_id, body.team_id, shared_by=user_id)
        in_team = await _assignee_in_team(repo, todo)

    logger.info("Todo %s shared with team %s by %s", todo.id, body.team_id, user_id)
    request.app.state.notifier.todo_update(todo, "shared", assignee_in_team=in_team)
    return serialize_todo(todo)
