"""SQLAlchemy ORM models for the clan portal.

clan schema: accounts, profiles, reports, promotion_requests
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import TIMESTAMP


class Base(DeclarativeBase):
    pass


RANK_VALUES = "('Newbie', 'Test', 'Main', 'HighStaff')"


class Account(Base):
    """Login identity. One row per Discord user, never deleted by login."""

    __tablename__ = "accounts"
    __table_args__ = {"schema": "clan"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )

    profile: Mapped[Optional["Profile"]] = relationship(back_populates="account")


class Profile(Base):
    """Display identity and last-resolved authorization state of an account."""

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint(f"rank IS NULL OR rank IN {RANK_VALUES}", name="ck_profiles_rank"),
        {"schema": "clan"},
    )

    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clan.accounts.id", ondelete="CASCADE"), primary_key=True
    )
    external_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar_handle: Mapped[Optional[str]] = mapped_column(String(100))
    rank: Mapped[Optional[str]] = mapped_column(String(20))
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    next_rank_deadline: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True)
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    account: Mapped[Account] = relationship(back_populates="profile")
    reports: Mapped[list["Report"]] = relationship(back_populates="profile")


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        CheckConstraint("type IN ('video', 'screenshot')", name="ck_reports_type"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_reports_status"
        ),
        {"schema": "clan"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clan.profiles.account_id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    reviewer_comment: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )

    profile: Mapped[Profile] = relationship(back_populates="reports")


class PromotionRequest(Base):
    __tablename__ = "promotion_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_promotion_requests_status",
        ),
        Index(
            "uq_promotion_requests_pending",
            "account_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
        ),
        {"schema": "clan"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clan.profiles.account_id", ondelete="CASCADE"), nullable=False
    )
    current_rank: Mapped[str] = mapped_column(String(20), nullable=False)
    target_rank: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    reviewer_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("clan.accounts.id")
    )
    reviewer_comment: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )

    profile: Mapped[Profile] = relationship()
