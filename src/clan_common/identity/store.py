"""Account and profile persistence used by the identity resolver.

Both writes are keyed upserts so a replayed or duplicated login converges
on the same rows:
- accounts: INSERT ... ON CONFLICT (external_id) DO NOTHING, then read back
- profiles: INSERT ... ON CONFLICT (account_id) DO UPDATE, deadline on insert only

No locks and no version column; the last profile write wins.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clan_common.db.models import Account, Profile
from clan_common.discord.identity_client import ExternalIdentity
from clan_common.identity.errors import StoreError
from clan_common.identity.roles import RankAssignment

logger = logging.getLogger(__name__)


class ProfileStore:
    """Store adapter bound to one request's database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _abort(self, action: str, exc: SQLAlchemyError) -> None:
        logger.error("Store failure during %s: %s", action, exc)
        await self.db.rollback()

    async def get_or_create_account(self, external_id: str) -> Account:
        """Return the account for ``external_id``, creating it if absent.

        A concurrent login that inserted first is not an error: the insert
        becomes a no-op and the existing row is returned.
        """
        stmt = (
            insert(Account)
            .values(external_id=external_id)
            .on_conflict_do_nothing(index_elements=[Account.external_id])
            .returning(Account.id)
        )
        try:
            created_id = (await self.db.execute(stmt)).scalar_one_or_none()
            result = await self.db.execute(
                select(Account).where(Account.external_id == external_id)
            )
            account = result.scalar_one()
        except SQLAlchemyError as exc:
            await self._abort("resolve account", exc)
            raise StoreError("Could not resolve account") from exc

        if created_id is not None:
            logger.info("Created account %d for discord_id=%s", account.id, external_id)
        return account

    async def upsert_profile(
        self,
        account: Account,
        identity: ExternalIdentity,
        assignment: RankAssignment,
        next_rank_deadline: datetime,
    ) -> Profile:
        """Write the freshly resolved identity and rank onto the account's profile.

        Display name, avatar, rank, and admin flag are overwritten.
        ``next_rank_deadline`` is only written when the profile is created.
        """
        fresh = {
            "display_name": identity.display_name,
            "avatar_handle": identity.avatar_handle,
            "rank": assignment.rank.value,
            "is_admin": assignment.is_admin,
        }
        stmt = (
            insert(Profile)
            .values(
                account_id=account.id,
                external_id=account.external_id,
                next_rank_deadline=next_rank_deadline,
                **fresh,
            )
            .on_conflict_do_update(
                index_elements=[Profile.account_id],
                set_={**fresh, "updated_at": func.now()},
            )
        )
        try:
            await self.db.execute(stmt)
            result = await self.db.execute(
                select(Profile)
                .where(Profile.account_id == account.id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one()
        except SQLAlchemyError as exc:
            await self._abort("upsert profile", exc)
            raise StoreError("Could not upsert profile") from exc

    async def set_rank(
        self, account_id: int, assignment: Optional[RankAssignment]
    ) -> Optional[Profile]:
        """Overwrite rank and admin flag; ``None`` clears both. Profile is kept."""
        profile = await self.get_profile(account_id)
        if profile is None:
            return None
        profile.rank = assignment.rank.value if assignment else None
        profile.is_admin = assignment.is_admin if assignment else False
        try:
            await self.db.flush()
        except SQLAlchemyError as exc:
            await self._abort("update rank", exc)
            raise StoreError("Could not update rank") from exc
        return profile

    async def get_profile(self, account_id: int) -> Optional[Profile]:
        try:
            result = await self.db.execute(
                select(Profile)
                .where(Profile.account_id == account_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as exc:
            await self._abort("load profile", exc)
            raise StoreError("Could not load profile") from exc
        return result.scalar_one_or_none()

    async def get_profile_by_external_id(self, external_id: str) -> Optional[Profile]:
        try:
            result = await self.db.execute(
                select(Profile).where(Profile.external_id == external_id)
            )
        except SQLAlchemyError as exc:
            await self._abort("load profile", exc)
            raise StoreError("Could not load profile") from exc
        return result.scalar_one_or_none()

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self._abort("commit", exc)
            raise StoreError("Could not commit") from exc

    async def rollback(self) -> None:
        await self.db.rollback()
