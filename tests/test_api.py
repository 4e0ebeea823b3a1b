"""Tests for the REST API endpoints and the events they broadcast."""

from __future__ import annotations

import httpx
import pytest

from taskpulse.api.app import create_api
from taskpulse.config import Config
from taskpulse.db import Repository, close_db, get_session, init_db


@pytest.fixture(autouse=True)
async def db():
    """Create an in-memory SQLite DB for each test."""
    await init_db("sqlite+aiosqlite://")
    yield
    await close_db()


@pytest.fixture
async def tokens() -> dict[str, dict[str, str]]:
    """Seed one access token per user and return ready-made headers."""
    headers = {}
    async with get_session() as s:
        repo = Repository(s)
        for user in ("alice", "bob", "carol"):
            token = await repo.create_access_token(user)
            headers[user] = {"Authorization": f"Bearer {token}"}
    return headers


@pytest.fixture
async def api_client(hub):
    """Create an httpx.AsyncClient wired to the FastAPI app.

    The lifespan does not run under ASGITransport; the DB and hub come
    from fixtures instead.
    """
    app = create_api(Config(database_url="sqlite+aiosqlite://"), hub=hub)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def listen(hub, make_conn, take):
    """Register a fake connection for a user and return a reader for its events."""

    def _listen(user_id: str, groups=()):
        conn = make_conn(user_id, groups)
        hub.register(conn)

        async def events() -> list:
            await hub.drain()
            return take(conn)

        return events

    return _listen


async def _create_team(client, headers, name="Core") -> str:
    resp = await client.post("/api/teams", json={"name": name}, headers=headers)
    assert resp.status_code == 201
    return resp.json()["id"]


async def _add_member(client, headers, team_id, user_id, role="member"):
    return await client.post(
        f"/api/teams/{team_id}/members",
        json={"user_id": user_id, "role": role},
        headers=headers,
    )


# ---------------------------------------------------------------
# Auth and health
# ---------------------------------------------------------------


async def test_missing_token(api_client):
    resp = await api_client.get("/api/todos")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Authentication required"


async def test_invalid_token(api_client):
    resp = await api_client.get("/api/todos", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


async def test_health_is_public(api_client, hub):
    resp = await api_client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["realtime"]["running"] is True
    assert data["db_stats"] == {"teams": 0, "team_members": 0, "todos": 0}


# ---------------------------------------------------------------
# Todos
# ---------------------------------------------------------------


async def test_create_and_get_todo(api_client, tokens):
    resp = await api_client.post(
        "/api/todos",
        json={"title": "Write docs", "priority": "high", "tags": ["docs"]},
        headers=tokens["alice"],
    )
    assert resp.status_code == 201
    todo = resp.json()
    assert todo["user_id"] == "alice"
    assert todo["status"] == "not_started"
    assert todo["tags"] == ["docs"]
    assert todo["team_id"] is None

    resp = await api_client.get(f"/api/todos/{todo['id']}", headers=tokens["alice"])
    assert resp.status_code == 200
    assert resp.json()["title"] == "Write docs"


async def test_create_todo_validation(api_client, tokens):
    resp = await api_client.post(
        "/api/todos", json={"title": "", "priority": "meh"}, headers=tokens["alice"]
    )
    assert resp.status_code == 422


async def test_get_todo_not_found(api_client, tokens):
    resp = await api_client.get("/api/todos/missing", headers=tokens["alice"])
    assert resp.status_code == 404


async def test_personal_todo_hidden_from_others(api_client, tokens):
    resp = await api_client.post("/api/todos", json={"title": "Private"}, headers=tokens["alice"])
    todo_id = resp.json()["id"]

    resp = await api_client.get(f"/api/todos/{todo_id}", headers=tokens["bob"])
    assert resp.status_code == 403
    resp = await api_client.patch(
        f"/api/todos/{todo_id}", json={"title": "Mine now"}, headers=tokens["bob"]
    )
    assert resp.status_code == 403


async def test_personal_todo_event_goes_to_owner_only(api_client, tokens, listen):
    alice = listen("alice")
    bob = listen("bob")

    resp = await api_client.post("/api/todos", json={"title": "Quiet"}, headers=tokens["alice"])
    assert resp.status_code == 201

    events = await alice()
    assert len(events) == 1
    assert events[0].type == "todo_update"
    assert events[0].payload["action"] == "created"
    assert events[0].payload["todo"]["title"] == "Quiet"
    assert await bob() == []


async def test_team_todo_reaches_team_members(api_client, tokens, listen):
    team_id = await _create_team(api_client, tokens["alice"])
    assert (await _add_member(api_client, tokens["alice"], team_id, "bob")).status_code == 201

    bob = listen("bob", groups=[team_id])
    carol = listen("carol")

    resp = await api_client.post(
        "/api/todos", json={"title": "Shared", "team_id": team_id}, headers=tokens["alice"]
    )
    assert resp.status_code == 201
    assert resp.json()["is_shared"] is True

    events = await bob()
    assert [e.payload["action"] for e in events] == ["created"]
    assert events[0].payload["team_id"] == team_id
    assert await carol() == []


async def test_create_todo_in_foreign_team(api_client, tokens):
    team_id = await _create_team(api_client, tokens["alice"])
    resp = await api_client.post(
        "/api/todos", json={"title": "Sneaky", "team_id": team_id}, headers=tokens["bob"]
    )
    assert resp.status_code == 403

    resp = await api_client.post(
        "/api/todos", json={"title": "Lost", "team_id": "no-such-team"}, headers=tokens["bob"]
    )
    assert resp.status_code == 404


async def test_update_actions(api_client, tokens, listen):
    resp = await api_client.post("/api/todos", json={"title": "Task"}, headers=tokens["alice"])
    todo_id = resp.json()["id"]
    alice = listen("alice")

    resp = await api_client.patch(
        f"/api/todos/{todo_id}", json={"status": "in_progress"}, headers=tokens["alice"]
    )
    assert resp.status_code == 200
    resp = await api_client.patch(
        f"/api/todos/{todo_id}", json={"status": "completed"}, headers=tokens["alice"]
    )
    assert resp.json()["completed_at"] is not None
    resp = await api_client.patch(
        f"/api/todos/{todo_id}", json={"description": "more"}, headers=tokens["alice"]
    )
    assert resp.json()["description"] == "more"
    assert resp.json()["status"] == "completed"

    actions = [e.payload["action"] for e in await alice()]
    assert actions == ["status_changed", "completed", "updated"]


async def test_assignee_is_notified(api_client, tokens, listen):
    resp = await api_client.post("/api/todos", json={"title": "Review"}, headers=tokens["alice"])
    todo_id = resp.json()["id"]
    bob = listen("bob")

    resp = await api_client.patch(
        f"/api/todos/{todo_id}", json={"assigned_to": "bob"}, headers=tokens["alice"]
    )
    assert resp.status_code == 200

    events = await bob()
    assert [e.type for e in events] == ["todo_update", "notification"]
    assert events[1].payload["type"] == "todo_assigned"
    assert "Review" in events[1].payload["content"]

    # The assignee can now see and work on it
    resp = await api_client.patch(
        f"/api/todos/{todo_id}", json={"status": "completed"}, headers=tokens["bob"]
    )
    assert resp.status_code == 200


async def test_assignee_follows_personal_todo(api_client, tokens, listen):
    resp = await api_client.post(
        "/api/todos", json={"title": "Draft", "assigned_to": "bob"}, headers=tokens["alice"]
    )
    todo_id = resp.json()["id"]
    alice = listen("alice")
    bob = listen("bob")

    resp = await api_client.patch(
        f"/api/todos/{todo_id}", json={"title": "Final"}, headers=tokens["alice"]
    )
    assert resp.status_code == 200

    for events in (await alice(), await bob()):
        assert len(events) == 1
        assert events[0].payload["action"] == "updated"
        assert events[0].payload["todo"]["title"] == "Final"


async def test_assignee_outside_team_gets_direct_copy(api_client, tokens, listen):
    team_id = await _create_team(api_client, tokens["alice"])
    await _add_member(api_client, tokens["alice"], team_id, "bob")
    bob = listen("bob", groups=[team_id])
    carol = listen("carol")

    resp = await api_client.post(
        "/api/todos",
        json={"title": "Audit", "team_id": team_id, "assigned_to": "carol"},
        headers=tokens["alice"],
    )
    assert resp.status_code == 201

    assert [e.payload["action"] for e in await bob()] == ["created"]
    carol_events = await carol()
    assert [e.type for e in carol_events] == ["todo_update", "notification"]
    assert carol_events[0].target_user == "carol"


async def test_team_member_assignee_not_duplicated(api_client, tokens, listen):
    team_id = await _create_team(api_client, tokens["alice"])
    await _add_member(api_client, tokens["alice"], team_id, "bob")
    bob = listen("bob", groups=[team_id])

    await api_client.post(
        "/api/todos",
        json={"title": "Pair", "team_id": team_id, "assigned_to": "bob"},
        headers=tokens["alice"],
    )

    assert [e.type for e in await bob()] == ["todo_update", "notification"]


@pytest.mark.parametrize("field", ["title", "description", "status", "priority"])
async def test_update_rejects_null_for_required_fields(api_client, tokens, field):
    resp = await api_client.post("/api/todos", json={"title": "Keep"}, headers=tokens["alice"])
    todo_id = resp.json()["id"]

    resp = await api_client.patch(
        f"/api/todos/{todo_id}", json={field: None}, headers=tokens["alice"]
    )
    assert resp.status_code == 422

    resp = await api_client.get(f"/api/todos/{todo_id}", headers=tokens["alice"])
    assert resp.json()["title"] == "Keep"
    assert resp.json()["status"] == "not_started"


async def test_update_allows_clearing_optional_fields(api_client, tokens):
    resp = await api_client.post(
        "/api/todos",
        json={"title": "Due", "due_date": "2026-11-01T09:00:00Z", "assigned_to": "bob"},
        headers=tokens["alice"],
    )
    todo_id = resp.json()["id"]

    resp = await api_client.patch(
        f"/api/todos/{todo_id}",
        json={"due_date": None, "assigned_to": None},
        headers=tokens["alice"],
    )
    assert resp.status_code == 200
    assert resp.json()["due_date"] is None
    assert resp.json()["assigned_to"] is None


async def test_delete_todo(api_client, tokens, listen):
    resp = await api_client.post("/api/todos", json={"title": "Bin"}, headers=tokens["alice"])
    todo_id = resp.json()["id"]
    alice = listen("alice")

    resp = await api_client.delete(f"/api/todos/{todo_id}", headers=tokens["bob"])
    assert resp.status_code == 403
    resp = await api_client.delete(f"/api/todos/{todo_id}", headers=tokens["alice"])
    assert resp.status_code == 204
    resp = await api_client.get(f"/api/todos/{todo_id}", headers=tokens["alice"])
    assert resp.status_code == 404

    events = await alice()
    assert [e.payload["action"] for e in events] == ["deleted"]


async def test_team_member_cannot_delete_others_todo(api_client, tokens):
    team_id = await _create_team(api_client, tokens["alice"])
    await _add_member(api_client, tokens["alice"], team_id, "bob")
    await _add_member(api_client, tokens["alice"], team_id, "carol", role="admin")
    resp = await api_client.post(
        "/api/todos", json={"title": "Team", "team_id": team_id}, headers=tokens["alice"]
    )
    todo_id = resp.json()["id"]

    resp = await api_client.delete(f"/api/todos/{todo_id}", headers=tokens["bob"])
    assert resp.status_code == 403
    resp = await api_client.delete(f"/api/todos/{todo_id}", headers=tokens["carol"])
    assert resp.status_code == 204


async def test_share_todo(api_client, tokens, listen):
    team_id = await _create_team(api_client, tokens["alice"])
    await _add_member(api_client, tokens["alice"], team_id, "bob")
    resp = await api_client.post("/api/todos", json={"title": "Solo"}, headers=tokens["alice"])
    todo_id = resp.json()["id"]
    bob = listen("bob", groups=[team_id])

    resp = await api_client.post(
        f"/api/todos/{todo_id}/share", json={"team_id": team_id}, headers=tokens["bob"]
    )
    assert resp.status_code == 403

    resp = await api_client.post(
        f"/api/todos/{todo_id}/share", json={"team_id": team_id}, headers=tokens["alice"]
    )
    assert resp.status_code == 200
    assert resp.json()["team_id"] == team_id
    assert resp.json()["shared_by"] == "alice"

    events = await bob()
    assert [e.payload["action"] for e in events] == ["shared"]
    resp = await api_client.get(f"/api/todos/{todo_id}", headers=tokens["bob"])
    assert resp.status_code == 200


async def test_list_todos_filters_and_pages(api_client, tokens):
    for title, priority in [("A", "low"), ("B", "urgent"), ("C", "high")]:
        await api_client.post(
            "/api/todos", json={"title": title, "priority": priority}, headers=tokens["alice"]
        )
    await api_client.post("/api/todos", json={"title": "Bob's"}, headers=tokens["bob"])

    resp = await api_client.get(
        "/api/todos",
        params={"sort_by": "title", "order": "asc", "page_size": 2},
        headers=tokens["alice"],
    )
    data = resp.json()
    assert [t["title"] for t in data["items"]] == ["A", "B"]
    assert data["total"] == 3
    assert data["has_next"] is True

    resp = await api_client.get(
        "/api/todos",
        params=[("priority", "urgent"), ("priority", "high"), ("sort_by", "priority")],
        headers=tokens["alice"],
    )
    assert [t["title"] for t in resp.json()["items"]] == ["B", "C"]

    resp = await api_client.get(
        "/api/todos", params={"page_size": 500}, headers=tokens["alice"]
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------
# Teams
# ---------------------------------------------------------------


async def test_create_and_list_teams(api_client, tokens):
    await _create_team(api_client, tokens["alice"], "Zeta")
    await _create_team(api_client, tokens["bob"], "Other")

    resp = await api_client.get("/api/teams", headers=tokens["alice"])
    assert [t["name"] for t in resp.json()] == ["Zeta"]


async def test_team_creation_subscribes_creator(api_client, tokens, hub, make_conn, take):
    conn = make_conn("alice")
    hub.register(conn)

    team_id = await _create_team(api_client, tokens["alice"])
    await hub.drain()

    assert team_id in conn.groups
    events = take(conn)
    assert events[0].type == "team_update"
    assert events[0].payload["action"] == "created"


async def test_add_member_updates_live_connections(api_client, tokens, hub, make_conn, take):
    team_id = await _create_team(api_client, tokens["alice"])
    bob_conn = make_conn("bob")
    hub.register(bob_conn)

    resp = await _add_member(api_client, tokens["alice"], team_id, "bob")
    assert resp.status_code == 201
    assert resp.json()["role"] == "member"
    await hub.drain()

    assert team_id in bob_conn.groups
    events = take(bob_conn)
    assert [e.type for e in events] == ["team_update", "notification"]
    assert events[0].payload["action"] == "member_added"
    assert events[1].payload["type"] == "team_invite"


async def test_add_member_requires_admin(api_client, tokens):
    team_id = await _create_team(api_client, tokens["alice"])
    await _add_member(api_client, tokens["alice"], team_id, "bob")

    resp = await _add_member(api_client, tokens["bob"], team_id, "carol")
    assert resp.status_code == 403
    resp = await _add_member(api_client, tokens["alice"], team_id, "alice", role="member")
    assert resp.status_code == 409
    resp = await _add_member(api_client, tokens["alice"], "missing", "carol")
    assert resp.status_code == 404


async def test_list_members(api_client, tokens):
    team_id = await _create_team(api_client, tokens["alice"])
    await _add_member(api_client, tokens["alice"], team_id, "bob", role="admin")

    resp = await api_client.get(f"/api/teams/{team_id}/members", headers=tokens["bob"])
    assert {m["user_id"]: m["role"] for m in resp.json()} == {"alice": "owner", "bob": "admin"}

    resp = await api_client.get(f"/api/teams/{team_id}/members", headers=tokens["carol"])
    assert resp.status_code == 403


async def test_remove_member(api_client, tokens, hub, make_conn, take):
    team_id = await _create_team(api_client, tokens["alice"])
    await _add_member(api_client, tokens["alice"], team_id, "bob")
    bob_conn = make_conn("bob", groups=[team_id])
    hub.register(bob_conn)

    resp = await api_client.delete(
        f"/api/teams/{team_id}/members/bob", headers=tokens["alice"]
    )
    assert resp.status_code == 204
    await hub.drain()

    assert [e.payload["action"] for e in take(bob_conn)] == ["member_removed"]
    assert team_id not in bob_conn.groups

    resp = await api_client.delete(
        f"/api/teams/{team_id}/members/bob", headers=tokens["alice"]
    )
    assert resp.status_code == 404


async def test_member_can_leave_but_owner_cannot(api_client, tokens):
    team_id = await _create_team(api_client, tokens["alice"])
    await _add_member(api_client, tokens["alice"], team_id, "bob")
    await _add_member(api_client, tokens["alice"], team_id, "carol")

    resp = await api_client.delete(f"/api/teams/{team_id}/members/carol", headers=tokens["bob"])
    assert resp.status_code == 403
    resp = await api_client.delete(f"/api/teams/{team_id}/members/bob", headers=tokens["bob"])
    assert resp.status_code == 204
    resp = await api_client.delete(f"/api/teams/{team_id}/members/alice", headers=tokens["alice"])
    assert resp.status_code == 409
