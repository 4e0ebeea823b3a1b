"""Database layer for taskpulse: async SQLAlchemy with SQLite by default."""

from taskpulse.db.engine import close_db, get_session, init_db
from taskpulse.db.models import AccessToken, Base, Team, TeamMember, Todo
from taskpulse.db.repository import Repository, TodoFilter

__all__ = [
    "AccessToken",
    "Base",
    "Repository",
    "Team",
    "TeamMember",
    "Todo",
    "TodoFilter",
    "close_db",
    "get_session",
    "init_db",
]
