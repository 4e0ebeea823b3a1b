"""Entry point for the taskpulse server."""

import argparse
import asyncio
import logging
import sys

from taskpulse.api.app import run_server
from taskpulse.config import Config
from taskpulse.db import Repository, close_db, get_session, init_db


async def _issue_token(database_url: str, user_id: str) -> str:
    await init_db(database_url)
    try:
        async with get_session() as s:
            return await Repository(s).create_access_token(user_id)
    finally:
        await close_db()


async def _revoke_tokens(database_url: str, user_id: str) -> int:
    await init_db(database_url)
    try:
        async with get_session() as s:
            return await Repository(s).revoke_access_tokens(user_id)
    finally:
        await close_db()


def main():
    """Parse arguments, validate config and start the server."""
    parser = argparse.ArgumentParser(
        description="taskpulse: collaborative todo API with real-time updates",
    )
    parser.add_argument("--host", help="Bind address (HTTP_HOST)")
    parser.add_argument("--port", type=int, help="Bind port (HTTP_PORT)")
    parser.add_argument("--database-url", help="SQLAlchemy async URL (DATABASE_URL)")
    parser.add_argument(
        "--issue-token",
        metavar="USER_ID",
        help="Create an access token for USER_ID, print it and exit",
    )
    parser.add_argument(
        "--revoke-tokens",
        metavar="USER_ID",
        help="Disable every access token of USER_ID and exit",
    )
    args = parser.parse_args()

    config = Config.from_args(
        host=args.host,
        port=args.port,
        database_url=args.database_url,
    )

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, config.log_level, logging.INFO),
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logger = logging.getLogger(__name__)

    errors = config.validate()
    if errors:
        for err in errors:
            logger.error(err)
        sys.exit(1)

    if args.issue_token:
        token = asyncio.run(_issue_token(config.resolved_database_url, args.issue_token))
        print(token)
        return

    if args.revoke_tokens:
        count = asyncio.run(_revoke_tokens(config.resolved_database_url, args.revoke_tokens))
        print(f"Revoked {count} token(s) for {args.revoke_tokens}")
        return

    logger.info("Database: %s", config.resolved_database_url)
    run_server(config)


if __name__ == "__main__":
    main()
