"""Initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Accounts table
    op.create_table(
        "accounts",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("encrypted_api_token", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), onupdate=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("label"),
    )

    # Rotation sessions table
    op.create_table(
        "rotation_sessions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("account_id", sa.UUID(), nullable=False),
        sa.Column("campaign_id", sa.BigInteger(), nullable=False),
        sa.Column("listing_id", sa.BigInteger(), nullable=False),
        sa.Column("creatives", postgresql.JSONB(), nullable=False),
        sa.Column("views_per_step", sa.Integer(), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("views_at_step_start", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("cumulative_views", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("metrics_since", sa.Date(), nullable=False),
        sa.Column("auto_top_up", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("top_up_threshold", sa.Integer(), nullable=False),
        sa.Column("top_up_amount", sa.Integer(), nullable=False),
        sa.Column("next_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), onupdate=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_rotation_sessions_account_id", "rotation_sessions", ["account_id"])
    op.create_index("ix_rotation_sessions_campaign_id", "rotation_sessions", ["campaign_id"])
    op.create_index("ix_rotation_sessions_status", "rotation_sessions", ["status"])
    op.create_index(
        "ix_rotation_sessions_due", "rotation_sessions", ["status", "next_check_at"]
    )
    # At most one non-terminal session per campaign
    op.create_index(
        "uq_rotation_sessions_active_campaign",
        "rotation_sessions",
        ["account_id", "campaign_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('draft', 'running', 'paused')"),
    )

    # Rotation steps table
    op.create_table(
        "rotation_steps",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("session_id", sa.UUID(), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("creative_ref", sa.Text(), nullable=False),
        sa.Column("views_at_start", sa.BigInteger(), nullable=False),
        sa.Column("views_at_end", sa.BigInteger(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["session_id"], ["rotation_sessions.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("session_id", "step_index", name="uq_rotation_steps_index"),
    )
    op.create_index("ix_rotation_steps_session_id", "rotation_steps", ["session_id"])

    # Campaign stats table
    op.create_table(
        "campaign_stats",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("account_id", sa.UUID(), nullable=False),
        sa.Column("campaign_id", sa.BigInteger(), nullable=False),
        sa.Column("stats_date", sa.Date(), nullable=False),
        sa.Column("impressions", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("clicks", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("conversions", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("spend", sa.Float(), nullable=False, server_default="0"),
        sa.Column("ctr", sa.Float(), nullable=False, server_default="0"),
        sa.Column("fetched_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "account_id", "campaign_id", "stats_date", name="uq_campaign_stats_day"
        ),
    )
    op.create_index("ix_campaign_stats_account_id", "campaign_stats", ["account_id"])
    op.create_index("ix_campaign_stats_campaign_id", "campaign_stats", ["campaign_id"])
    op.create_index("ix_campaign_stats_stats_date", "campaign_stats", ["stats_date"])


def downgrade() -> None:
    op.drop_table("campaign_stats")
    op.drop_table("rotation_steps")
    op.drop_index("uq_rotation_sessions_active_campaign", table_name="rotation_sessions")
    op.drop_table("rotation_sessions")
    op.drop_table("accounts")
