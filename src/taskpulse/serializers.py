"""ORM objects -> JSON-serializable dicts, shared by REST and realtime."""

from __future__ import annotations

import json
from datetime import datetime, timezone


def utc_iso(dt: datetime | None) -> str | None:
    """Ensure datetime is serialized as UTC ISO-8601."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return []


def serialize_todo(t) -> dict:
    return {
        "id": t.id,
        "user_id": t.user_id,
        "title": t.title,
        "description": t.description,
        "status": t.status,
        "priority": t.priority,
        "due_date": utc_iso(t.due_date),
        "tags": _tags(t.tags),
        "team_id": t.team_id,
        "is_shared": t.is_shared,
        "shared_by": t.shared_by,
        "assigned_to": t.assigned_to,
        "completed_at": utc_iso(t.completed_at),
        "created_at": utc_iso(t.created_at),
        "updated_at": utc_iso(t.updated_at),
    }


def serialize_team(t) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "created_by": t.created_by,
        "created_at": utc_iso(t.created_at),
    }


def serialize_member(m) -> dict:
    return {
        "team_id": m.team_id,
        "user_id": m.user_id,
        "role": m.role,
        "joined_at": utc_iso(m.joined_at),
    }
