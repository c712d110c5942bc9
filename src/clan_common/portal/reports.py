"""Activity report service functions."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clan_common.db.models import Report

REPORT_TYPES = {"video", "screenshot"}
REVIEW_STATUSES = {"approved", "rejected"}


async def create_report(
    db: AsyncSession,
    account_id: int,
    type: str,
    url: str,
    description: str = "",
) -> Report:
    if type not in REPORT_TYPES:
        raise ValueError(f"Unknown report type {type!r}")
    if not url.strip():
        raise ValueError("Report URL is required")
    report = Report(
        account_id=account_id,
        type=type,
        url=url.strip(),
        description=description,
        status="pending",
    )
    db.add(report)
    await db.flush()
    await db.refresh(report)
    return report


async def get_reports_for_account(db: AsyncSession, account_id: int) -> list[Report]:
    result = await db.execute(
        select(Report)
        .where(Report.account_id == account_id)
        .order_by(Report.created_at.desc(), Report.id.desc())
    )
    return list(result.scalars().all())


async def get_all_reports(db: AsyncSession) -> list[Report]:
    result = await db.execute(
        select(Report).order_by(Report.created_at.desc(), Report.id.desc())
    )
    return list(result.scalars().all())


async def review_report(
    db: AsyncSession, report_id: int, status: str, comment: str | None = None
) -> Report:
    if status not in REVIEW_STATUSES:
        raise ValueError(f"Invalid review status {status!r}")
    result = await db.execute(select(Report).where(Report.id == report_id))
    report = result.scalar_one_or_none()
    if report is None:
        raise ValueError(f"Report {report_id} not found")
    report.status = status
    report.reviewer_comment = comment or None
    await db.flush()
    await db.refresh(report)
    return report


async def count_reports_by_account(db: AsyncSession) -> dict[int, int]:
    """Return {account_id: number of reports} for every account with reports."""
    result = await db.execute(
        select(Report.account_id, func.count(Report.id)).group_by(Report.account_id)
    )
    return {account_id: count for account_id, count in result.all()}
