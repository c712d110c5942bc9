"""Member portal API for activity reports and promotion requests, plus the admin member list."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clan_portal.config import get_settings
from clan_portal.deps import get_db, require_access, require_admin
from clan_common.db.models import Profile, PromotionRequest, Report
from clan_common.identity.auth_context import AuthState
from clan_common.portal import promotions as promotion_service
from clan_common.portal import reports as report_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["portal"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class ReportCreate(BaseModel):
    type: Literal["video", "screenshot"]
    url: str
    description: str = ""


class ReviewBody(BaseModel):
    status: Literal["approved", "rejected"]
    comment: str | None = None


class DecisionBody(BaseModel):
    comment: str | None = None


def _report_dict(report: Report) -> dict:
    return {
        "id": report.id,
        "account_id": report.account_id,
        "type": report.type,
        "url": report.url,
        "description": report.description,
        "status": report.status,
        "reviewer_comment": report.reviewer_comment,
        "date": report.created_at.date().isoformat() if report.created_at else None,
    }


def _request_dict(request: PromotionRequest, reports_count: int = 0) -> dict:
    profile = request.profile
    return {
        "id": request.id,
        "account_id": request.account_id,
        "member_name": profile.display_name if profile else "Unknown",
        "member_avatar": profile.avatar_handle if profile else None,
        "current_rank": request.current_rank,
        "target_rank": request.target_rank,
        "status": request.status,
        "comment": request.reviewer_comment,
        "reports_count": reports_count,
        "date": request.created_at.date().isoformat() if request.created_at else None,
    }


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@router.post("/reports")
async def create_report(
    body: ReportCreate,
    state: AuthState = Depends(require_access),
    db: AsyncSession = Depends(get_db),
):
    try:
        report = await report_service.create_report(
            db,
            account_id=state.profile.account_id,
            type=body.type,
            url=body.url,
            description=body.description,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"ok": True, "data": _report_dict(report)}


@router.get("/reports/mine")
async def list_my_reports(
    state: AuthState = Depends(require_access),
    db: AsyncSession = Depends(get_db),
):
    reports = await report_service.get_reports_for_account(db, state.profile.account_id)
    return {"ok": True, "data": [_report_dict(r) for r in reports]}


@router.get("/reports", dependencies=[Depends(require_admin)])
async def list_all_reports(db: AsyncSession = Depends(get_db)):
    reports = await report_service.get_all_reports(db)
    return {"ok": True, "data": [_report_dict(r) for r in reports]}


@router.patch("/reports/{report_id}", dependencies=[Depends(require_admin)])
async def review_report(
    report_id: int, body: ReviewBody, db: AsyncSession = Depends(get_db)
):
    try:
        report = await report_service.review_report(db, report_id, body.status, body.comment)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"ok": True, "data": _report_dict(report)}


# ---------------------------------------------------------------------------
# Promotion requests
# ---------------------------------------------------------------------------


@router.post("/promotions")
async def request_promotion(
    state: AuthState = Depends(require_access),
    db: AsyncSession = Depends(get_db),
):
    try:
        request = await promotion_service.request_promotion(db, state.profile.account_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"ok": True, "data": _request_dict(request)}


@router.get("/promotions", dependencies=[Depends(require_admin)])
async def list_pending_promotions(db: AsyncSession = Depends(get_db)):
    requests = await promotion_service.get_pending_requests(db)
    counts = await report_service.count_reports_by_account(db)
    return {
        "ok": True,
        "data": [_request_dict(r, counts.get(r.account_id, 0)) for r in requests],
    }


@router.post("/promotions/{request_id}/approve")
async def approve_promotion(
    request_id: int,
    body: DecisionBody,
    state: AuthState = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        request = await promotion_service.approve_promotion(
            db,
            request_id,
            reviewer_id=state.profile.account_id,
            comment=body.comment,
            next_rank_days=get_settings().next_rank_days,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"ok": True, "data": _request_dict(request)}


@router.post("/promotions/{request_id}/reject")
async def reject_promotion(
    request_id: int,
    body: DecisionBody,
    state: AuthState = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        request = await promotion_service.reject_promotion(
            db, request_id, reviewer_id=state.profile.account_id, comment=body.comment
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"ok": True, "data": _request_dict(request)}


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get("/members", dependencies=[Depends(require_admin)])
async def list_members(db: AsyncSession = Depends(get_db)):
    """Members who currently hold a rank, with report counts and pending flags."""
    result = await db.execute(
        select(Profile).where(Profile.rank.is_not(None)).order_by(Profile.display_name)
    )
    profiles = list(result.scalars().all())
    counts = await report_service.count_reports_by_account(db)
    pending = await promotion_service.pending_account_ids(db)

    return {
        "ok": True,
        "data": [
            {
                "id": p.account_id,
                "external_id": p.external_id,
                "display_name": p.display_name,
                "avatar_handle": p.avatar_handle,
                "rank": p.rank,
                "is_admin": p.is_admin,
                "reports_count": counts.get(p.account_id, 0),
                "has_pending_promotion": p.account_id in pending,
            }
            for p in profiles
        ],
    }
