"""Discord login endpoint: consent URL, code callback and role refresh.

One path, dispatched on the ``action`` query parameter:

    GET  ?action=get_oauth_url&redirect_uri=...
    POST ?action=callback        body {code, redirect_uri}
    POST ?action=refresh_roles   Authorization: Bearer <session>
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from clan_portal.config import get_settings
from clan_portal.deps import bearer, get_current_account, get_db, get_discord_client
from clan_common.auth.jwt import create_session_token
from clan_common.discord.identity_client import DiscordIdentityClient
from clan_common.identity.errors import (
    InvalidGrant,
    NoQualifyingRole,
    NotAMember,
    StoreError,
    Unauthorized,
    UpstreamError,
)
from clan_common.identity.resolver import IdentityResolver
from clan_common.identity.store import ProfileStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/discord-auth", tags=["discord-auth"])

# Remediation differs, so each rejection keeps its own message
NOT_MEMBER_MESSAGE = "You are not a member of the clan Discord server. Join the server and try again."
NO_ROLE_MESSAGE = "You have no clan role on the Discord server. Ask staff for a role to get access."
NO_ROLE_ANYMORE_MESSAGE = "You no longer have a clan role on the Discord server."
STORE_ERROR_MESSAGE = "Could not save your profile. Please try logging in again."
UPSTREAM_ERROR_MESSAGE = "Discord is not responding right now. Please try again."
CALLBACK_BODY_MESSAGE = "code and redirect_uri are required"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class CallbackBody(BaseModel):
    code: str | None = None
    redirect_uri: str | None = None


def _error(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    content = {"error": error}
    if message is not None:
        content["message"] = message
    return JSONResponse(content, status_code=status_code)


def _build_resolver(
    client: DiscordIdentityClient, db: AsyncSession
) -> IdentityResolver:
    settings = get_settings()
    return IdentityResolver(
        client=client,
        store=ProfileStore(db),
        role_config=settings.role_config(),
        session_issuer=create_session_token,
        next_rank_days=settings.next_rank_days,
    )


def _verification_url(token: str) -> str:
    settings = get_settings()
    return f"{settings.public_base_url.rstrip('/')}/auth/session?{urlencode({'token': token})}"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("")
async def discord_auth_get(
    action: str | None = None,
    redirect_uri: str | None = None,
    client: DiscordIdentityClient = Depends(get_discord_client),
):
    """Return the Discord consent URL for ``redirect_uri``."""
    if action != "get_oauth_url":
        return _error(400, "Invalid action")
    if not redirect_uri:
        return _error(400, "redirect_uri is required")
    return {"url": client.authorize_url(redirect_uri)}


@router.post("")
async def discord_auth_post(
    request: Request,
    action: str | None = None,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
    client: DiscordIdentityClient = Depends(get_discord_client),
):
    if action == "callback":
        return await _callback(request, client, db)
    if action == "refresh_roles":
        return await _refresh_roles(request, credentials, client, db)
    return _error(400, "Invalid action")


async def _read_callback_body(request: Request) -> CallbackBody | None:
    try:
        payload = await request.json()
    except ValueError:
        return None
    try:
        return CallbackBody.model_validate(payload)
    except ValidationError:
        return None


async def _callback(
    request: Request, client: DiscordIdentityClient, db: AsyncSession
) -> JSONResponse | dict:
    """Exchange the code, verify guild membership and rank, and issue a session."""
    body = await _read_callback_body(request)
    if body is None or not body.code or not body.redirect_uri:
        return _error(400, CALLBACK_BODY_MESSAGE)

    resolver = _build_resolver(client, db)
    try:
        resolution = await resolver.resolve(body.code, body.redirect_uri)
    except (InvalidGrant, Unauthorized) as exc:
        logger.info("Discord login failed at %s: %s", resolver.state, exc)
        return _error(400, "Failed to exchange code for token")
    except NotAMember:
        return _error(403, NotAMember.reason, NOT_MEMBER_MESSAGE)
    except NoQualifyingRole:
        return _error(403, NoQualifyingRole.reason, NO_ROLE_MESSAGE)
    except UpstreamError as exc:
        logger.warning("Discord login upstream failure at %s: %s", resolver.state, exc)
        return _error(502, UpstreamError.reason, UPSTREAM_ERROR_MESSAGE)
    except StoreError:
        return _error(503, StoreError.reason, STORE_ERROR_MESSAGE)

    return {
        "success": True,
        "user": resolution.profile.as_dict(),
        "verification_url": _verification_url(resolution.session),
        "token": resolution.session,
    }


async def _refresh_roles(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
    client: DiscordIdentityClient,
    db: AsyncSession,
) -> JSONResponse | dict:
    """Re-read the signed-in member's Discord roles and update their profile."""
    try:
        account = await get_current_account(request, credentials, db)
    except HTTPException:
        return _error(401, "Unauthorized")

    if not account.external_id:
        return _error(400, "No Discord ID found")

    resolver = _build_resolver(client, db)
    try:
        assignment = await resolver.refresh(account.id, account.external_id)
    except NoQualifyingRole:
        return _error(403, NoQualifyingRole.reason, NO_ROLE_ANYMORE_MESSAGE)
    except UpstreamError as exc:
        logger.warning("Role refresh upstream failure for account %d: %s", account.id, exc)
        return _error(502, UpstreamError.reason, UPSTREAM_ERROR_MESSAGE)
    except StoreError:
        return _error(503, StoreError.reason, STORE_ERROR_MESSAGE)

    return {
        "success": True,
        "rank": assignment.rank.value,
        "is_admin": assignment.is_admin,
    }
