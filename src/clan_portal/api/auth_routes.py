"""Session routes: cookie hand-off, current profile and logout."""

import logging
from datetime import datetime, timezone

import jwt
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clan_portal.config import get_settings
from clan_portal.deps import COOKIE_NAME, get_auth_state, get_db
from clan_common.auth.jwt import decode_session_token
from clan_common.db.models import Profile
from clan_common.identity.auth_context import AuthState

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def _set_session_cookie(response: RedirectResponse, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.app_env == "production",
        samesite="lax",
        max_age=settings.jwt_expire_minutes * 60,
        path="/",
    )


def _days_until(deadline: datetime | None) -> int | None:
    if deadline is None:
        return None
    remaining = deadline - datetime.now(timezone.utc)
    return max(remaining.days, 0)


@router.get("/auth/session")
async def start_session(token: str, next: str = "/"):
    """Verification link target: store the session in a cookie and redirect."""
    try:
        decode_session_token(token)
    except jwt.InvalidTokenError:
        return JSONResponse({"error": "Invalid or expired session link"}, status_code=401)

    # Only same-site redirects
    target = next if next.startswith("/") and not next.startswith("//") else "/"
    response = RedirectResponse(url=target, status_code=302)
    _set_session_cookie(response, token)
    return response


@router.post("/api/v1/auth/logout")
async def logout():
    response = JSONResponse({"ok": True})
    response.delete_cookie(key=COOKIE_NAME, path="/")
    return response


@router.get("/api/v1/auth/me")
async def get_me(
    state: AuthState = Depends(get_auth_state),
    db: AsyncSession = Depends(get_db),
):
    """Return the signed-in profile and its derived authorization flags."""
    profile_data = None
    if state.profile is not None:
        result = await db.execute(
            select(Profile).where(Profile.account_id == state.profile.account_id)
        )
        profile = result.scalar_one()
        profile_data = {
            **state.profile.as_dict(),
            "days_until_next_rank": _days_until(profile.next_rank_deadline),
        }

    return {
        "ok": True,
        "data": {
            "is_authenticated": state.is_authenticated,
            "has_access": state.has_access,
            "is_admin": state.is_admin,
            "profile": profile_data,
        },
    }
