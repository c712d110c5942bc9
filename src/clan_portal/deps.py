"""FastAPI dependencies shared across routes."""

from collections.abc import AsyncGenerator

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clan_portal.config import get_settings
from clan_common.db.engine import get_session_factory
from clan_common.db.models import Account, Profile
from clan_common.discord.identity_client import DiscordIdentityClient
from clan_common.identity.auth_context import AuthState
from clan_common.identity.resolver import ProfileSummary

bearer = HTTPBearer(auto_error=False)

COOKIE_NAME = "clan_session"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields a database session per request."""
    settings = get_settings()
    factory = get_session_factory(settings.database_url)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_discord_client() -> AsyncGenerator[DiscordIdentityClient, None]:
    """FastAPI dependency: a Discord client for the duration of one request."""
    settings = get_settings()
    client = DiscordIdentityClient(
        client_id=settings.discord_client_id,
        client_secret=settings.discord_client_secret,
        bot_token=settings.discord_bot_token,
        guild_id=settings.discord_guild_id,
        timeout=settings.discord_timeout_seconds,
    )
    try:
        yield client
    finally:
        await client.aclose()


def _session_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(COOKIE_NAME)


async def get_current_account(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> Account:
    """Extract the session JWT from the Authorization header or cookie and return its account.

    Raises HTTP 401 if no valid session is found.
    """
    from clan_common.auth.jwt import decode_session_token

    token_str = _session_token(request, credentials)
    if not token_str:
        raise HTTPException(status_code=401, detail="Not authenticated.")

    try:
        payload = decode_session_token(token_str)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Session has expired.")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid session.")

    account_id = payload.get("account_id")
    if account_id is None:
        raise HTTPException(status_code=401, detail="Invalid session payload.")

    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()
    if account is None:
        raise HTTPException(status_code=401, detail="Account not found.")
    return account


def summarize(profile: Profile) -> ProfileSummary:
    return ProfileSummary(
        account_id=profile.account_id,
        external_id=profile.external_id,
        display_name=profile.display_name,
        avatar_handle=profile.avatar_handle,
        rank=profile.rank,
        is_admin=profile.is_admin,
    )


async def get_auth_state(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> AuthState:
    """Authorization state for the signed-in account, built from its stored profile."""
    result = await db.execute(select(Profile).where(Profile.account_id == account.id))
    profile = result.scalar_one_or_none()
    return AuthState(
        session=_session_token(request, credentials),
        profile=summarize(profile) if profile is not None else None,
    )


async def require_access(state: AuthState = Depends(get_auth_state)) -> AuthState:
    """Raises HTTP 403 unless the profile currently grants access."""
    if not state.has_access:
        raise HTTPException(status_code=403, detail="No access.")
    return state


async def require_admin(state: AuthState = Depends(get_auth_state)) -> AuthState:
    """Raises HTTP 403 unless the profile is an admin."""
    if not state.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required.")
    return state
