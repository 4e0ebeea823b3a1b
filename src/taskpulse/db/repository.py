"""Repository: async data access for tokens, teams and todos."""

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskpulse.db.models import (
    PRIORITIES,
    ROLE_OWNER,
    STATUS_COMPLETED,
    AccessToken,
    Team,
    TeamMember,
    Todo,
)

# Columns a listing may be sorted by
SORT_FIELDS = ("created_at", "updated_at", "due_date", "priority", "status", "title")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class TodoFilter:
    """Filtering, sorting and paging options for ``list_todos``."""

    visible_to: str | None = None
    owner: str | None = None
    statuses: list[str] = field(default_factory=list)
    priorities: list[str] = field(default_factory=list)
    team_id: str | None = None
    assigned_to: str | None = None
    tag: str | None = None
    search: str | None = None
    due_from: datetime | None = None
    due_to: datetime | None = None
    sort_by: str = "created_at"
    descending: bool = True
    page: int = 1
    page_size: int = 20


class Repository:
    """High-level async data access. Accepts a session from get_session()."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    async def create_access_token(self, user_id: str) -> str:
        """Issue a new token for ``user_id``. The raw value is returned once."""
        token = secrets.token_urlsafe(32)
        self.session.add(
            AccessToken(
                user_id=user_id,
                token_hash=_hash_token(token),
                token_prefix=token[:8],
            )
        )
        await self.session.flush()
        return token

    async def verify_access_token(self, token: str) -> str | None:
        """Return the caller identity for a valid token, else None."""
        if not token:
            return None
        stmt = select(AccessToken).where(
            AccessToken.token_hash == _hash_token(token),
            AccessToken.enabled.is_(True),
        )
        result = await self.session.execute(stmt)
        at = result.scalar_one_or_none()
        if at is None:
            return None
        at.last_used_at = _utcnow()
        await self.session.flush()
        return at.user_id

    async def revoke_access_tokens(self, user_id: str) -> int:
        """Disable every token of a user. Returns how many were enabled."""
        stmt = select(AccessToken).where(
            AccessToken.user_id == user_id, AccessToken.enabled.is_(True)
        )
        result = await self.session.execute(stmt)
        tokens = list(result.scalars().all())
        for at in tokens:
            at.enabled = False
        await self.session.flush()
        return len(tokens)

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    async def create_team(self, name: str, created_by: str, description: str = "") -> Team:
        """Create a team; the creator becomes its owner."""
        team = Team(name=name, description=description, created_by=created_by)
        self.session.add(team)
        await self.session.flush()
        self.session.add(TeamMember(team_id=team.id, user_id=created_by, role=ROLE_OWNER))
        await self.session.flush()
        return team

    async def get_team(self, team_id: str) -> Team | None:
        return await self.session.get(Team, team_id)

    async def list_teams_for_user(self, user_id: str) -> list[Team]:
        stmt = (
            select(Team)
            .join(TeamMember, TeamMember.team_id == Team.id)
            .where(TeamMember.user_id == user_id)
            .order_by(Team.name)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_team_ids_for_user(self, user_id: str) -> list[str]:
        """Team ids the user belongs to, used as initial realtime groups."""
        stmt = select(TeamMember.team_id).where(TeamMember.user_id == user_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_member(self, team_id: str, user_id: str) -> TeamMember | None:
        stmt = select(TeamMember).where(
            TeamMember.team_id == team_id, TeamMember.user_id == user_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_members(self, team_id: str) -> list[TeamMember]:
        stmt = (
            select(TeamMember)
            .where(TeamMember.team_id == team_id)
            .order_by(TeamMember.joined_at, TeamMember.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def add_member(self, team_id: str, user_id: str, role: str) -> TeamMember:
        """Add a user to a team, or change the role of an existing member."""
        member = await self.get_member(team_id, user_id)
        if member is None:
            member = TeamMember(team_id=team_id, user_id=user_id, role=role)
            self.session.add(member)
        else:
            member.role = role
        await self.session.flush()
        return member

    async def remove_member(self, team_id: str, user_id: str) -> bool:
        """Remove a user from a team. Returns True if removed."""
        stmt = delete(TeamMember).where(
            TeamMember.team_id == team_id, TeamMember.user_id == user_id
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    async def create_todo(
        self,
        user_id: str,
        title: str,
        description: str = "",
        priority: str = "medium",
        due_date: datetime | None = None,
        tags: list[str] | None = None,
        team_id: str | None = None,
        assigned_to: str | None = None,
    ) -> Todo:
        todo = Todo(
            user_id=user_id,
            title=title,
            description=description,
            priority=priority,
            due_date=due_date,
            tags=json.dumps(tags) if tags else None,
            team_id=team_id,
            is_shared=team_id is not None,
            shared_by=user_id if team_id else None,
            assigned_to=assigned_to,
        )
        self.session.add(todo)
        await self.session.flush()
        return todo

    async def get_todo(self, todo_id: str) -> Todo | None:
        return await self.session.get(Todo, todo_id)

    async def update_todo(self, todo_id: str, **fields) -> Todo | None:
        """Update todo fields. Pass tags as a list; status keeps completed_at in sync."""
        todo = await self.get_todo(todo_id)
        if todo is None:
            return None
        for name, value in fields.items():
            if name == "tags":
                todo.tags = json.dumps(value) if value else None
            elif name == "status":
                todo.status = value
                if value == STATUS_COMPLETED:
                    if todo.completed_at is None:
                        todo.completed_at = _utcnow()
                else:
                    todo.completed_at = None
            else:
                setattr(todo, name, value)
        todo.updated_at = _utcnow()
        await self.session.flush()
        return todo

    async def share_todo(self, todo_id: str, team_id: str, shared_by: str) -> Todo | None:
        """Move a todo into a team so every member sees it."""
        return await self.update_todo(
            todo_id, team_id=team_id, is_shared=True, shared_by=shared_by
        )

    async def delete_todo(self, todo_id: str) -> bool:
        """Delete a todo. Returns True if deleted."""
        todo = await self.get_todo(todo_id)
        if todo is None:
            return False
        await self.session.delete(todo)
        await self.session.flush()
        return True

    async def list_todos(self, flt: TodoFilter) -> tuple[list[Todo], int]:
        """Filtered, sorted page of todos plus the total match count."""
        conditions = []
        if flt.visible_to is not None:
            team_ids = select(TeamMember.team_id).where(TeamMember.user_id == flt.visible_to)
            conditions.append(
                or_(
                    Todo.user_id == flt.visible_to,
                    Todo.assigned_to == flt.visible_to,
                    Todo.team_id.in_(team_ids),
                )
            )
        if flt.owner is not None:
            conditions.append(Todo.user_id == flt.owner)
        if flt.statuses:
            conditions.append(Todo.status.in_(flt.statuses))
        if flt.priorities:
            conditions.append(Todo.priority.in_(flt.priorities))
        if flt.team_id is not None:
            conditions.append(Todo.team_id == flt.team_id)
        if flt.assigned_to is not None:
            conditions.append(Todo.assigned_to == flt.assigned_to)
        if flt.tag:
            # Tags are a JSON list; match the quoted element
            conditions.append(Todo.tags.contains(json.dumps(flt.tag)))
        if flt.search:
            pattern = f"%{flt.search}%"
            conditions.append(
                or_(Todo.title.ilike(pattern), Todo.description.ilike(pattern))
            )
        if flt.due_from is not None:
            conditions.append(Todo.due_date >= flt.due_from)
        if flt.due_to is not None:
            conditions.append(Todo.due_date <= flt.due_to)

        count_stmt = select(func.count()).select_from(Todo).where(*conditions)
        total = (await self.session.execute(count_stmt)).scalar() or 0

        sort_field = flt.sort_by if flt.sort_by in SORT_FIELDS else "created_at"
        if sort_field == "priority":
            column = case({p: i for i, p in enumerate(PRIORITIES)}, value=Todo.priority)
        else:
            column = getattr(Todo, sort_field)
        order = column.desc() if flt.descending else column.asc()
        page = max(flt.page, 1)
        stmt = (
            select(Todo)
            .where(*conditions)
            .order_by(order, Todo.id)
            .offset((page - 1) * flt.page_size)
            .limit(flt.page_size)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def count_rows(self) -> dict[str, int]:
        """Row counts per table for the health endpoint."""
        counts = {}
        for model, key in [(Team, "teams"), (TeamMember, "team_members"), (Todo, "todos")]:
            result = await self.session.execute(select(func.count()).select_from(model))
            counts[key] = result.scalar() or 0
        return counts
