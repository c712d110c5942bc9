"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import TIMESTAMP

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS clan")

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.String(32), nullable=False, unique=True),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.func.now()),
        schema="clan",
    )

    op.create_table(
        "profiles",
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("clan.accounts.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("external_id", sa.String(32), nullable=False, unique=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("avatar_handle", sa.String(100)),
        sa.Column("rank", sa.String(20)),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("next_rank_deadline", TIMESTAMP(timezone=True)),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "rank IS NULL OR rank IN ('Newbie', 'Test', 'Main', 'HighStaff')",
            name="ck_profiles_rank",
        ),
        schema="clan",
    )

    op.create_table(
        "reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("clan.profiles.account_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reviewer_comment", sa.Text()),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('video', 'screenshot')", name="ck_reports_type"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_reports_status"
        ),
        schema="clan",
    )

    op.create_table(
        "promotion_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("clan.profiles.account_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("current_rank", sa.String(20), nullable=False),
        sa.Column("target_rank", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reviewer_id", sa.Integer(), sa.ForeignKey("clan.accounts.id")),
        sa.Column("reviewer_comment", sa.Text()),
        sa.Column("reviewed_at", TIMESTAMP(timezone=True)),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_promotion_requests_status",
        ),
        schema="clan",
    )
    # At most one open request per member
    op.create_index(
        "uq_promotion_requests_pending",
        "promotion_requests",
        ["account_id"],
        unique=True,
        schema="clan",
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_table("promotion_requests", schema="clan")
    op.drop_table("reports", schema="clan")
    op.drop_table("profiles", schema="clan")
    op.drop_table("accounts", schema="clan")
