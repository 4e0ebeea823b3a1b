"""Access rules for todos and teams.

Role hierarchy: owner > admin > member. A todo is visible to its owner,
its assignee and every member of the team it is shared with.
"""

from __future__ import annotations

from taskpulse.db.models import ROLE_ADMIN, ROLE_MEMBER, Todo
from taskpulse.db.repository import Repository


async def has_team_role(repo: Repository, team_id: str, user_id: str, role: str) -> bool:
    member = await repo.get_member(team_id, user_id)
    return member is not None and member.has_role(role)


async def can_view_todo(repo: Repository, todo: Todo, user_id: str) -> bool:
    if user_id in (todo.user_id, todo.assigned_to):
        return True
    if todo.team_id:
        return await has_team_role(repo, todo.team_id, user_id, ROLE_MEMBER)
    return False


async def can_edit_todo(repo: Repository, todo: Todo, user_id: str) -> bool:
    # Anyone who can see a todo can work on it
    return await can_view_todo(repo, todo, user_id)


async def can_delete_todo(repo: Repository, todo: Todo, user_id: str) -> bool:
    if todo.user_id == user_id:
        return True
    if todo.team_id:
        return await has_team_role(repo, todo.team_id, user_id, ROLE_ADMIN)
    return False
