"""SQLAlchemy ORM models."""

from datetime import date, datetime
from uuid import UUID as PyUUID
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    true,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

_ACTIVE_SESSION_PREDICATE = "status IN ('draft', 'running', 'paused')"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class AccountModel(Base):
    """Seller account whose marketplace API token drives the adapters."""

    __tablename__ = "accounts"

    id: Mapped[PyUUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    label: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    encrypted_api_token: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    sessions: Mapped[list["RotationSessionModel"]] = relationship(
        "RotationSessionModel", back_populates="account", cascade="all, delete-orphan"
    )


class RotationSessionModel(Base):
    """One creative rotation test for an advertising campaign."""

    __tablename__ = "rotation_sessions"
    __table_args__ = (
        # At most one non-terminal session per campaign
        Index(
            "uq_rotation_sessions_active_campaign",
            "account_id",
            "campaign_id",
            unique=True,
            postgresql_where=text(_ACTIVE_SESSION_PREDICATE),
            sqlite_where=text(_ACTIVE_SESSION_PREDICATE),
        ),
        Index("ix_rotation_sessions_due", "status", "next_check_at"),
    )

    id: Mapped[PyUUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    account_id: Mapped[PyUUID] = mapped_column(
        Uuid(), ForeignKey("accounts.id", ondelete="CASCADE"), index=True
    )
    campaign_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    listing_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    creatives: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    views_per_step: Mapped[int] = mapped_column(Integer, nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    views_at_step_start: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    cumulative_views: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    metrics_since: Mapped[date] = mapped_column(Date, nullable=False)
    auto_top_up: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    top_up_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    top_up_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    next_check_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_check_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    account: Mapped["AccountModel"] = relationship("AccountModel", back_populates="sessions")
    steps: Mapped[list["StepRecordModel"]] = relationship(
        "StepRecordModel",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="StepRecordModel.step_index",
    )


class StepRecordModel(Base):
    """One creative that was actually live during a session."""

    __tablename__ = "rotation_steps"
    __table_args__ = (
        UniqueConstraint("session_id", "step_index", name="uq_rotation_steps_index"),
    )

    id: Mapped[PyUUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    session_id: Mapped[PyUUID] = mapped_column(
        Uuid(), ForeignKey("rotation_sessions.id", ondelete="CASCADE"), index=True
    )
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    creative_ref: Mapped[str] = mapped_column(Text, nullable=False)
    views_at_start: Mapped[int] = mapped_column(BigInteger, nullable=False)
    views_at_end: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    session: Mapped["RotationSessionModel"] = relationship(
        "RotationSessionModel", back_populates="steps"
    )


class CampaignStatsModel(Base):
    """Daily campaign statistics, one row per account/campaign/day."""

    __tablename__ = "campaign_stats"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "campaign_id", "stats_date", name="uq_campaign_stats_day"
        ),
    )

    id: Mapped[PyUUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    account_id: Mapped[PyUUID] = mapped_column(
        Uuid(), ForeignKey("accounts.id", ondelete="CASCADE"), index=True
    )
    campaign_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    stats_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    impressions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    clicks: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    conversions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    spend: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ctr: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
