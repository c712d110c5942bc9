"""Discord login → local session, and on-demand role refresh.

resolve() walks a fixed sequence and never steps back:

    CODE_RECEIVED → TOKEN_EXCHANGED → IDENTITY_FETCHED → MEMBERSHIP_FETCHED
    → RANK_MAPPED → ACCOUNT_RESOLVED → PROFILE_UPSERTED → SESSION_ISSUED

Nothing touches the store before ACCOUNT_RESOLVED, so any rejection up to
RANK_MAPPED leaves the database exactly as it was and the whole login can be
retried from the start. Account resolution and the profile upsert share one
commit.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from clan_common.discord.identity_client import DiscordIdentityClient
from clan_common.identity.errors import NoQualifyingRole, NotAMember
from clan_common.identity.roles import RankAssignment, RoleConfig, map_roles
from clan_common.identity.store import ProfileStore

logger = logging.getLogger(__name__)

DEFAULT_NEXT_RANK_DAYS = 30


class ResolutionState(enum.Enum):
    CODE_RECEIVED = "code_received"
    TOKEN_EXCHANGED = "token_exchanged"
    IDENTITY_FETCHED = "identity_fetched"
    MEMBERSHIP_FETCHED = "membership_fetched"
    RANK_MAPPED = "rank_mapped"
    ACCOUNT_RESOLVED = "account_resolved"
    PROFILE_UPSERTED = "profile_upserted"
    SESSION_ISSUED = "session_issued"


@dataclass(frozen=True)
class ProfileSummary:
    account_id: int
    external_id: str
    display_name: str
    avatar_handle: Optional[str]
    rank: Optional[str]
    is_admin: bool

    def as_dict(self) -> dict:
        return {
            "id": self.account_id,
            "external_id": self.external_id,
            "display_name": self.display_name,
            "avatar_handle": self.avatar_handle,
            "rank": self.rank,
            "is_admin": self.is_admin,
        }


@dataclass(frozen=True)
class Resolution:
    session: str
    profile: ProfileSummary


SessionIssuer = Callable[[int, str], str]


class IdentityResolver:
    """Turns a Discord authorization code into a session and a current profile.

    One instance per request; it holds no state between calls other than the
    last state reached, which is kept for logging and tests.
    """

    def __init__(
        self,
        client: DiscordIdentityClient,
        store: ProfileStore,
        role_config: RoleConfig,
        session_issuer: SessionIssuer,
        next_rank_days: int = DEFAULT_NEXT_RANK_DAYS,
    ):
        self.client = client
        self.store = store
        self.role_config = role_config
        self.session_issuer = session_issuer
        self.next_rank_days = next_rank_days
        self.state: ResolutionState | None = None

    def _advance(self, state: ResolutionState) -> None:
        self.state = state
        logger.debug("Resolution state → %s", state.value)

    async def resolve(self, code: str, redirect_uri: str) -> Resolution:
        """Run the full login sequence.

        Raises InvalidGrant, Unauthorized, NotAMember, NoQualifyingRole, or
        UpstreamError before any write; StoreError if the commit fails.
        """
        self._advance(ResolutionState.CODE_RECEIVED)

        access_token = await self.client.exchange_code(code, redirect_uri)
        self._advance(ResolutionState.TOKEN_EXCHANGED)

        identity = await self.client.fetch_self(access_token)
        self._advance(ResolutionState.IDENTITY_FETCHED)

        try:
            membership = await self.client.fetch_guild_membership(identity.external_id)
        except NotAMember:
            logger.info("Login rejected: discord_id=%s is not in the guild", identity.external_id)
            raise
        self._advance(ResolutionState.MEMBERSHIP_FETCHED)

        assignment = map_roles(membership.role_ids, self.role_config)
        if assignment is None:
            logger.info("Login rejected: discord_id=%s holds no rank role", identity.external_id)
            raise NoQualifyingRole(f"Discord user {identity.external_id} holds no rank role")
        self._advance(ResolutionState.RANK_MAPPED)

        account = await self.store.get_or_create_account(identity.external_id)
        self._advance(ResolutionState.ACCOUNT_RESOLVED)

        deadline = datetime.now(timezone.utc) + timedelta(days=self.next_rank_days)
        profile = await self.store.upsert_profile(account, identity, assignment, deadline)
        await self.store.commit()
        self._advance(ResolutionState.PROFILE_UPSERTED)

        session = self.session_issuer(account.id, account.external_id)
        self._advance(ResolutionState.SESSION_ISSUED)
        logger.info(
            "Login resolved: discord_id=%s account=%d rank=%s admin=%s",
            account.external_id,
            account.id,
            assignment.rank.value,
            assignment.is_admin,
        )

        return Resolution(
            session=session,
            profile=ProfileSummary(
                account_id=account.id,
                external_id=account.external_id,
                display_name=profile.display_name,
                avatar_handle=profile.avatar_handle,
                rank=assignment.rank.value,
                is_admin=assignment.is_admin,
            ),
        )

    async def refresh(self, account_id: int, external_id: str) -> RankAssignment:
        """Re-read guild roles for a signed-in member and store the result.

        If the member no longer qualifies (roles removed or left the guild)
        the profile is kept with rank and admin cleared, and NoQualifyingRole
        is raised. UpstreamError propagates with nothing written, leaving the
        last known rank in place.
        """
        try:
            membership = await self.client.fetch_guild_membership(external_id)
            assignment = map_roles(membership.role_ids, self.role_config)
        except NotAMember:
            assignment = None

        await self.store.set_rank(account_id, assignment)
        await self.store.commit()

        if assignment is None:
            logger.info("Refresh: discord_id=%s no longer holds a rank role", external_id)
            raise NoQualifyingRole(f"Discord user {external_id} holds no rank role")

        logger.info(
            "Refresh: discord_id=%s rank=%s admin=%s",
            external_id,
            assignment.rank.value,
            assignment.is_admin,
        )
        return assignment
