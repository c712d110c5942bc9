"""
Unit tests for the /functions/discord-auth endpoint and the session routes.

The app runs in-process over httpx's ASGITransport. The database session is
a mock, the Discord client is an AsyncMock, and ProfileStore is swapped for
the in-memory fake so no network or PostgreSQL is needed.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from clan_common.auth.jwt import create_session_token, decode_session_token
from clan_common.db.models import Account
from clan_common.identity.errors import InvalidGrant, NotAMember, UpstreamError
from clan_portal.deps import COOKIE_NAME, get_db, get_discord_client

from conftest import HIGH_STAFF_ID, MAIN_ID, NEWBIE_ID
from fakes import FakeProfileStore, make_discord_client, set_roles

ENDPOINT = "/functions/discord-auth"
REDIRECT = "https://portal.example/callback"


@pytest.fixture
def store():
    return FakeProfileStore()


@pytest.fixture
def discord():
    client = make_discord_client(external_id="E1", roles={NEWBIE_ID})
    client.authorize_url = MagicMock(
        side_effect=lambda redirect_uri: f"https://discord.com/oauth2/authorize?redirect_uri={redirect_uri}"
    )
    return client


@pytest.fixture
def db():
    """Mock session; execute() resolves session lookups from ``db.accounts``."""
    session = MagicMock()
    session.accounts = {}

    async def execute(statement):
        params = statement.compile().params
        account_id = next(iter(params.values()), None)
        result = MagicMock()
        result.scalar_one_or_none.return_value = session.accounts.get(account_id)
        return result

    session.execute = AsyncMock(side_effect=execute)
    return session


@pytest_asyncio.fixture
async def api(monkeypatch, store, discord, db):
    from clan_portal.app import create_app

    monkeypatch.setattr(
        "clan_portal.api.discord_auth_routes.ProfileStore", lambda session: store
    )
    app = create_app()

    async def override_get_db():
        yield db

    async def override_get_discord_client():
        yield discord

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_discord_client] = override_get_discord_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _login(api, code="code-1"):
    return await api.post(
        ENDPOINT,
        params={"action": "callback"},
        json={"code": code, "redirect_uri": REDIRECT},
    )


class TestCors:
    async def test_preflight_is_ok_with_headers(self, api):
        response = await api.options(ENDPOINT)
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "authorization" in response.headers["access-control-allow-headers"]

    async def test_error_responses_carry_cors_headers(self, api):
        response = await api.post(ENDPOINT, params={"action": "nope"})
        assert response.status_code == 400
        assert response.headers["access-control-allow-origin"] == "*"


class TestGetOAuthUrl:
    async def test_returns_consent_url(self, api, discord):
        response = await api.get(
            ENDPOINT, params={"action": "get_oauth_url", "redirect_uri": REDIRECT}
        )
        assert response.status_code == 200
        assert response.json()["url"].startswith("https://discord.com/oauth2/authorize")
        discord.authorize_url.assert_called_once_with(REDIRECT)

    async def test_missing_redirect_uri(self, api):
        response = await api.get(ENDPOINT, params={"action": "get_oauth_url"})
        assert response.status_code == 400

    async def test_unknown_get_action(self, api):
        response = await api.get(ENDPOINT, params={"action": "callback"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}


class TestCallback:
    async def test_success_returns_user_and_session(self, api, store):
        response = await _login(api)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["user"]["external_id"] == "E1"
        assert data["user"]["rank"] == "Newbie"
        assert data["user"]["is_admin"] is False
        assert data["verification_url"].startswith("http://test/auth/session?token=")
        payload = decode_session_token(data["token"])
        assert payload["account_id"] == data["user"]["id"]
        assert payload["external_id"] == "E1"
        assert len(store.accounts) == 1

    async def test_missing_code(self, api, store):
        response = await api.post(
            ENDPOINT, params={"action": "callback"}, json={"redirect_uri": REDIRECT}
        )
        assert response.status_code == 400
        assert store.accounts == {}

    @pytest.mark.parametrize(
        "content",
        [b"not json", b"", b"[1, 2]", b'{"code": 123, "redirect_uri": "https://x"}'],
    )
    async def test_malformed_body_is_bad_request(self, api, discord, store, content):
        response = await api.post(
            ENDPOINT,
            params={"action": "callback"},
            content=content,
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "code and redirect_uri are required"
        discord.exchange_code.assert_not_awaited()
        assert store.accounts == {}

    async def test_invalid_grant(self, api, discord, store):
        discord.exchange_code.side_effect = InvalidGrant("used")
        response = await _login(api)
        assert response.status_code == 400
        assert response.json()["error"] == "Failed to exchange code for token"
        assert store.accounts == {}

    async def test_not_member(self, api, discord, store):
        discord.fetch_guild_membership.side_effect = NotAMember("unknown member")
        response = await _login(api)
        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "not_member"
        assert "not a member" in body["message"]
        assert store.accounts == {}

    async def test_no_role(self, api, discord, store):
        set_roles(discord, {"123"})
        response = await _login(api)
        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "no_role"
        assert "no clan role" in body["message"]
        assert store.snapshot() == ({}, {})

    async def test_upstream_error(self, api, discord):
        discord.fetch_self.side_effect = UpstreamError("timeout")
        response = await _login(api)
        assert response.status_code == 502
        assert response.json()["error"] == "upstream_error"

    async def test_store_error(self, api, store):
        store.fail_on = "commit"
        response = await _login(api)
        assert response.status_code == 503
        assert response.json()["error"] == "store_error"

    async def test_admin_flag_from_high_staff_role(self, api, discord):
        set_roles(discord, {HIGH_STAFF_ID})
        response = await _login(api)
        assert response.json()["user"]["rank"] == "HighStaff"
        assert response.json()["user"]["is_admin"] is True


class TestRefreshRoles:
    async def _signed_in(self, api, db):
        data = (await _login(api)).json()
        account_id = data["user"]["id"]
        db.accounts[account_id] = Account(id=account_id, external_id="E1")
        return account_id, {"Authorization": f"Bearer {data['token']}"}

    async def test_without_session(self, api):
        response = await api.post(ENDPOINT, params={"action": "refresh_roles"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    async def test_junk_body_without_session_is_unauthorized(self, api):
        response = await api.post(
            ENDPOINT,
            params={"action": "refresh_roles"},
            content=b"garbage",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    async def test_with_garbage_session(self, api):
        response = await api.post(
            ENDPOINT,
            params={"action": "refresh_roles"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    async def test_picks_up_new_rank(self, api, db, discord, store):
        account_id, headers = await self._signed_in(api, db)
        set_roles(discord, {MAIN_ID})

        response = await api.post(ENDPOINT, params={"action": "refresh_roles"}, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "rank": "Main", "is_admin": False}
        assert store.profiles[account_id].rank == "Main"

    async def test_roles_removed(self, api, db, discord, store):
        account_id, headers = await self._signed_in(api, db)
        set_roles(discord, set())

        response = await api.post(ENDPOINT, params={"action": "refresh_roles"}, headers=headers)

        assert response.status_code == 403
        assert response.json()["error"] == "no_role"
        assert store.profiles[account_id].rank is None

    async def test_upstream_error_keeps_rank(self, api, db, discord, store):
        account_id, headers = await self._signed_in(api, db)
        discord.fetch_guild_membership.side_effect = UpstreamError("timeout")

        response = await api.post(ENDPOINT, params={"action": "refresh_roles"}, headers=headers)

        assert response.status_code == 502
        assert store.profiles[account_id].rank == "Newbie"

    async def test_session_cookie_is_accepted(self, api, db):
        _, headers = await self._signed_in(api, db)
        token = headers["Authorization"].split(" ", 1)[1]
        response = await api.post(
            ENDPOINT,
            params={"action": "refresh_roles"},
            headers={"Cookie": f"{COOKIE_NAME}={token}"},
        )

        assert response.status_code == 200


class TestSessionRoutes:
    async def test_session_link_sets_cookie_and_redirects(self, api):
        token = create_session_token(account_id=1, external_id="E1")
        response = await api.get("/auth/session", params={"token": token, "next": "/reports"})
        assert response.status_code == 302
        assert response.headers["location"] == "/reports"
        assert f"{COOKIE_NAME}=" in response.headers["set-cookie"]

    async def test_session_link_refuses_offsite_redirect(self, api):
        token = create_session_token(account_id=1, external_id="E1")
        response = await api.get(
            "/auth/session", params={"token": token, "next": "//evil.example"}
        )
        assert response.headers["location"] == "/"

    async def test_session_link_with_bad_token(self, api):
        response = await api.get("/auth/session", params={"token": "nope"})
        assert response.status_code == 401

    async def test_logout_clears_cookie(self, api):
        response = await api.post("/api/v1/auth/logout")
        assert response.status_code == 200
        set_cookie = response.headers["set-cookie"].lower()
        assert set_cookie.startswith(f"{COOKIE_NAME}=")
        assert "max-age=0" in set_cookie

    async def test_me_requires_session(self, api):
        response = await api.get("/api/v1/auth/me")
        assert response.status_code == 401
