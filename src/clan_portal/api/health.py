"""Liveness endpoint: database reachability and Discord login configuration."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from clan_portal.config import get_settings
from clan_common.db.engine import get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_reachable(database_url: str) -> bool:
    try:
        factory = get_session_factory(database_url)
        async with factory() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Health probe could not reach the database: %s", exc)
        return False
    return True


@router.get("/health")
async def health_check():
    """``ok`` when the database answers, ``degraded`` with HTTP 503 otherwise."""
    settings = get_settings()
    database = await _database_reachable(settings.database_url)
    role_config = settings.role_config()
    discord_login = all(
        (settings.discord_client_id, settings.discord_bot_token, settings.discord_guild_id)
    ) and all(role_id for role_id, _ in role_config.precedence())

    return JSONResponse(
        {
            "ok": database,
            "data": {
                "status": "ok" if database else "degraded",
                "database": database,
                "discord_login": discord_login,
            },
        },
        status_code=200 if database else 503,
    )
