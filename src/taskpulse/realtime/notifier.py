"""Domain-level broadcasts used by the REST handlers after a mutation."""

from __future__ import annotations

from taskpulse.realtime.events import NOTIFICATION, TEAM_UPDATE, TODO_UPDATE, Event
from taskpulse.realtime.hub import Hub
from taskpulse.serializers import serialize_team, serialize_todo


class Notifier:
    """Builds change events and hands them to the hub.

    Team-scoped entities go to the team's group; personal todos go to
    their owner and assignee.
    """

    def __init__(self, hub: Hub) -> None:
        self._hub = hub

    def todo_update(self, todo, action: str, assignee_in_team: bool = False) -> list[Event]:
        """Broadcast a todo change ("created", "updated", "deleted", ...).

        An assignee who would not otherwise receive the event (not the owner
        of a personal todo, not a member of the todo's team) gets a direct copy.
        """
        payload = {
            "action": action,
            "todo_id": todo.id,
            "todo": serialize_todo(todo),
        }
        if todo.team_id:
            payload["team_id"] = todo.team_id
            event = Event(type=TODO_UPDATE, payload=payload, target_group=todo.team_id)
        else:
            event = Event(type=TODO_UPDATE, payload=payload, target_user=todo.user_id)
        events = [event]
        assignee = todo.assigned_to
        if todo.team_id:
            direct = assignee and not assignee_in_team
        else:
            direct = assignee and assignee != todo.user_id
        if direct:
            events.append(
                Event(type=TODO_UPDATE, payload=payload, target_user=assignee)
            )
        for e in events:
            self._hub.broadcast(e)
        return events

    def team_update(self, team, action: str) -> Event:
        """Broadcast a team change to the team's members."""
        event = Event(
            type=TEAM_UPDATE,
            payload={"action": action, "team_id": team.id, "team": serialize_team(team)},
            target_group=team.id,
        )
        self._hub.broadcast(event)
        return event

    def user_notification(self, user_id: str, kind: str, content: str) -> Event:
        """Send a notification to every connection of one user."""
        event = Event(
            type=NOTIFICATION,
            payload={"type": kind, "content": content},
            target_user=user_id,
        )
        self._hub.broadcast(event)
        return event
