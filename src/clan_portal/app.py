"""Clan portal application factory."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from clan_portal.config import get_settings
from clan_common.db.engine import get_engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
# httpx logs every request line at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, PATCH, OPTIONS",
}


# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------


class PermissiveCORSMiddleware(BaseHTTPMiddleware):
    """Answers every preflight with 200 and adds CORS headers to every response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)
        for header, value in CORS_HEADERS.items():
            response.headers.setdefault(header, value)
        return response


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting clan portal (env=%s)", settings.app_env)
        role_config = settings.role_config()
        missing = [
            name for name, value in (
                ("DISCORD_CLIENT_ID", settings.discord_client_id),
                ("DISCORD_CLIENT_SECRET", settings.discord_client_secret),
                ("DISCORD_BOT_TOKEN", settings.discord_bot_token),
                ("DISCORD_GUILD_ID", settings.discord_guild_id),
                ("DISCORD_ROLE_HIGH_STAFF", role_config.high_staff),
                ("DISCORD_ROLE_MAIN", role_config.main),
                ("DISCORD_ROLE_TEST", role_config.test),
                ("DISCORD_ROLE_NEWBIE", role_config.newbie),
            )
            if not value
        ]
        if missing:
            logger.warning("Discord login not fully configured; missing %s", ", ".join(missing))

        yield

        engine = get_engine(settings.database_url)
        await engine.dispose()
        logger.info("Clan portal shutdown complete")

    app = FastAPI(
        title="Clan Portal",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(PermissiveCORSMiddleware)

    # ---------------------------------------------------------------------------
    # Exception handlers
    # ---------------------------------------------------------------------------

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        error_id = str(uuid.uuid4())[:8]
        logger.error(
            "Server error %s on %s: %s", error_id, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            {"error": "Internal server error", "error_id": error_id},
            status_code=500,
            headers=CORS_HEADERS,
        )

    # Register API routes
    from clan_portal.api.health import router as health_router
    from clan_portal.api.discord_auth_routes import router as discord_auth_router
    from clan_portal.api.auth_routes import router as auth_router
    from clan_portal.api.portal_routes import router as portal_router

    app.include_router(health_router, prefix="/api")
    app.include_router(discord_auth_router)
    app.include_router(auth_router)
    app.include_router(portal_router)

    return app
