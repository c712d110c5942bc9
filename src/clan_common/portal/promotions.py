"""Promotion request service functions.

Approval is the only path besides login/refresh that writes a profile's
rank. It also restarts the member's next-rank countdown.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from clan_common.db.models import Profile, PromotionRequest
from clan_common.identity.resolver import DEFAULT_NEXT_RANK_DAYS
from clan_common.identity.roles import Rank, next_rank

logger = logging.getLogger(__name__)


async def request_promotion(db: AsyncSession, account_id: int) -> PromotionRequest:
    """Open a promotion request to the member's next rank.

    Raises ValueError if the profile is missing, already at the top of the
    ladder, or already has a pending request.
    """
    result = await db.execute(select(Profile).where(Profile.account_id == account_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        raise ValueError(f"Profile {account_id} not found")

    current = Rank(profile.rank) if profile.rank else None
    target = next_rank(current)
    if target is None:
        raise ValueError("No promotion available from the current rank")

    pending = await db.execute(
        select(PromotionRequest.id).where(
            PromotionRequest.account_id == account_id,
            PromotionRequest.status == "pending",
        )
    )
    if pending.first() is not None:
        raise ValueError("A promotion request is already pending")

    request = PromotionRequest(
        account_id=account_id,
        current_rank=current.value,
        target_rank=target.value,
        status="pending",
    )
    db.add(request)
    try:
        await db.flush()
    except IntegrityError as exc:
        # Lost a race with a concurrent request for the same member
        await db.rollback()
        raise ValueError("A promotion request is already pending") from exc
    return await _load_request(db, request.id)


async def get_pending_requests(db: AsyncSession) -> list[PromotionRequest]:
    result = await db.execute(
        select(PromotionRequest)
        .options(selectinload(PromotionRequest.profile))
        .where(PromotionRequest.status == "pending")
        .order_by(PromotionRequest.created_at.desc(), PromotionRequest.id.desc())
    )
    return list(result.scalars().all())


async def pending_account_ids(db: AsyncSession) -> set[int]:
    result = await db.execute(
        select(PromotionRequest.account_id).where(PromotionRequest.status == "pending")
    )
    return set(result.scalars().all())


async def _load_request(db: AsyncSession, request_id: int) -> PromotionRequest | None:
    result = await db.execute(
        select(PromotionRequest)
        .options(selectinload(PromotionRequest.profile))
        .where(PromotionRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _get_pending(db: AsyncSession, request_id: int) -> PromotionRequest:
    request = await _load_request(db, request_id)
    if request is None:
        raise ValueError(f"Promotion request {request_id} not found")
    if request.status != "pending":
        raise ValueError(f"Promotion request {request_id} is already {request.status}")
    return request


async def approve_promotion(
    db: AsyncSession,
    request_id: int,
    reviewer_id: int,
    comment: str | None = None,
    next_rank_days: int = DEFAULT_NEXT_RANK_DAYS,
) -> PromotionRequest:
    request = await _get_pending(db, request_id)
    profile = request.profile
    if profile.rank != request.current_rank:
        raise ValueError(
            f"Promotion request {request_id} is stale: member is now "
            f"{profile.rank or 'unranked'}, not {request.current_rank}"
        )
    now = datetime.now(timezone.utc)
    request.status = "approved"
    request.reviewer_id = reviewer_id
    request.reviewer_comment = comment or None
    request.reviewed_at = now

    profile.rank = request.target_rank
    profile.next_rank_deadline = now + timedelta(days=next_rank_days)
    await db.flush()
    logger.info(
        "Promotion %d approved by account %d: account %d → %s",
        request.id,
        reviewer_id,
        request.account_id,
        request.target_rank,
    )
    return request


async def reject_promotion(
    db: AsyncSession,
    request_id: int,
    reviewer_id: int,
    comment: str | None = None,
) -> PromotionRequest:
    request = await _get_pending(db, request_id)
    request.status = "rejected"
    request.reviewer_id = reviewer_id
    request.reviewer_comment = comment or None
    request.reviewed_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info("Promotion %d rejected by account %d", request.id, reviewer_id)
    return request
