"""
Discord REST client for the login flow.

Three calls, each a single request with no retries:
- exchange_code: OAuth2 authorization code → user access token
- fetch_self: user access token → Discord user
- fetch_guild_membership: Discord user id → guild roles (bot credential)

Retry policy belongs to the caller. Every transport problem, rate limit,
or 5xx is raised as UpstreamError so the whole login can be restarted.

Usage:
    client = DiscordIdentityClient(client_id, client_secret, bot_token, guild_id)
    token = await client.exchange_code(code, redirect_uri)
    identity = await client.fetch_self(token)
    membership = await client.fetch_guild_membership(identity.external_id)
    await client.aclose()
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlencode

import httpx

from clan_common.identity.errors import (
    InvalidGrant,
    NotAMember,
    Unauthorized,
    UpstreamError,
)

logger = logging.getLogger(__name__)

# Discord API endpoints
DISCORD_API_BASE = "https://discord.com/api/v10"
DISCORD_OAUTH_AUTHORIZE = "https://discord.com/oauth2/authorize"
DISCORD_OAUTH_TOKEN = f"{DISCORD_API_BASE}/oauth2/token"

OAUTH_SCOPES = "identify guilds.members.read"

# Seconds per request; Discord gives no guidance so stay short
DEFAULT_TIMEOUT = 5.0


@dataclass(frozen=True)
class ExternalIdentity:
    """The Discord user behind an access token."""
    external_id: str
    display_name: str
    avatar_handle: Optional[str] = None


@dataclass(frozen=True)
class GuildMembership:
    """A member's role ids in the clan guild."""
    external_id: str
    role_ids: frozenset[str] = field(default_factory=frozenset)


class DiscordIdentityClient:
    """Async client for the Discord endpoints used during login."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        bot_token: str,
        guild_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.bot_token = bot_token
        self.guild_id = guild_id
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self):
        """Clean up HTTP client."""
        await self._http_client.aclose()

    def authorize_url(self, redirect_uri: str) -> str:
        """Build the Discord consent URL the browser is sent to."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": OAUTH_SCOPES,
        }
        return f"{DISCORD_OAUTH_AUTHORIZE}?{urlencode(params)}"

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http_client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Discord request timed out: %s %s", method, url)
            raise UpstreamError("Discord request timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Discord request failed: %s %s: %s", method, url, exc)
            raise UpstreamError(f"Discord request failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(
                "Discord API %d on %s %s", response.status_code, method, url
            )
            raise UpstreamError(f"Discord API returned HTTP {response.status_code}")
        return response

    @staticmethod
    def _payload(response: httpx.Response, what: str) -> dict:
        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("Discord %s response was not JSON", what)
            raise UpstreamError(f"Malformed {what} response") from exc
        if not isinstance(data, dict):
            raise UpstreamError(f"Malformed {what} response")
        return data

    async def exchange_code(self, code: str, redirect_uri: str) -> str:
        """Exchange an authorization code for the user's access token.

        Raises InvalidGrant if Discord refuses the code (expired, reused, or
        redirect_uri mismatch) and UpstreamError for transport failures.
        """
        response = await self._send(
            "POST",
            DISCORD_OAUTH_TOKEN,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            auth=(self.client_id, self.client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if response.status_code in (400, 401):
            # Body may echo the code; log the status only
            logger.info("Discord token exchange refused: HTTP %d", response.status_code)
            raise InvalidGrant("Authorization code was rejected")
        if response.status_code != 200:
            raise UpstreamError(
                f"Unexpected token exchange status {response.status_code}"
            )

        access_token = self._payload(response, "token exchange").get("access_token")
        if not access_token:
            raise UpstreamError("Token response did not include an access token")
        return access_token

    async def fetch_self(self, access_token: str) -> ExternalIdentity:
        """Return the Discord user owning ``access_token``."""
        response = await self._send(
            "GET",
            f"{DISCORD_API_BASE}/users/@me",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code == 401:
            raise Unauthorized("Discord access token is invalid or expired")
        if response.status_code != 200:
            raise UpstreamError(f"Unexpected /users/@me status {response.status_code}")

        data = self._payload(response, "/users/@me")
        if "id" not in data:
            raise UpstreamError("/users/@me response did not include an id")
        return ExternalIdentity(
            external_id=str(data["id"]),
            display_name=data.get("global_name") or data.get("username") or "",
            avatar_handle=data.get("avatar"),
        )

    async def fetch_guild_membership(self, external_id: str) -> GuildMembership:
        """Return the member's guild roles using the bot credential.

        The user's own token is never used here: reading another guild
        member record requires the bot's scope.
        """
        response = await self._send(
            "GET",
            f"{DISCORD_API_BASE}/guilds/{self.guild_id}/members/{external_id}",
            headers={"Authorization": f"Bot {self.bot_token}"},
        )
        if response.status_code == 404:
            raise NotAMember(f"Discord user {external_id} is not in the guild")
        if response.status_code != 200:
            logger.error(
                "Guild member lookup for %s returned HTTP %d",
                external_id,
                response.status_code,
            )
            raise UpstreamError(
                f"Unexpected guild member status {response.status_code}"
            )

        data = self._payload(response, "guild member")
        return GuildMembership(
            external_id=external_id,
            role_ids=frozenset(str(r) for r in data.get("roles", [])),
        )
