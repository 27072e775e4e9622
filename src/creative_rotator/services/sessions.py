"""Rotation session store.

Owns RotationSession and StepRecord rows. Every function takes an open
SQLAlchemy session and leaves committing to the caller
(``get_session_context`` or the FastAPI dependency), so a service can group
several store calls into one transaction.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from creative_rotator.config import settings
from creative_rotator.db.models import AccountModel, RotationSessionModel, StepRecordModel
from creative_rotator.domain.enums import ACTIVE_STATUSES, SessionStatus
from creative_rotator.domain.errors import InvalidTransitionError, NotFoundError, ValidationError
from creative_rotator.domain.models import SessionResults, SessionSnapshot, StepResult
from creative_rotator.logging import get_logger
from creative_rotator.utils.time_utils import as_utc, utcnow, utctoday

logger = get_logger(__name__)


def validate_creatives(creatives: Sequence[str]) -> list[str]:
    """Strip creative refs and check the 2-5 bound."""
    if isinstance(creatives, str):
        raise ValidationError("creatives must be a list of image references")
    cleaned = [str(c).strip() for c in creatives]
    if any(not c for c in cleaned):
        raise ValidationError("creative references must not be blank")
    if not settings.min_creatives <= len(cleaned) <= settings.max_creatives:
        raise ValidationError(
            f"A session needs {settings.min_creatives}-{settings.max_creatives} creatives, "
            f"got {len(cleaned)}"
        )
    return cleaned


def _require_positive(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")
    return value


def to_snapshot(model: RotationSessionModel) -> SessionSnapshot:
    return SessionSnapshot(
        id=model.id,
        account_id=model.account_id,
        campaign_id=model.campaign_id,
        listing_id=model.listing_id,
        creatives=tuple(model.creatives),
        views_per_step=model.views_per_step,
        current_step=model.current_step,
        views_at_step_start=model.views_at_step_start,
        cumulative_views=model.cumulative_views,
        status=SessionStatus(model.status),
        metrics_since=model.metrics_since,
        auto_top_up=model.auto_top_up,
        top_up_threshold=model.top_up_threshold,
        top_up_amount=model.top_up_amount,
        next_check_at=as_utc(model.next_check_at),
        last_check_at=as_utc(model.last_check_at),
        last_error=model.last_error,
        last_error_at=as_utc(model.last_error_at),
        created_at=as_utc(model.created_at),
    )


def get_session_model(
    db: Session, session_id: UUID, for_update: bool = False
) -> RotationSessionModel:
    query = select(RotationSessionModel).where(RotationSessionModel.id == session_id)
    if for_update:
        query = query.with_for_update()
    model = db.execute(query).scalar_one_or_none()
    if model is None:
        raise NotFoundError(f"Rotation session not found: {session_id}")
    return model


def get_status(db: Session, session_id: UUID) -> SessionSnapshot:
    return to_snapshot(get_session_model(db, session_id))


def find_active_session(
    db: Session, account_id: UUID, campaign_id: int
) -> RotationSessionModel | None:
    return db.execute(
        select(RotationSessionModel).where(
            RotationSessionModel.account_id == account_id,
            RotationSessionModel.campaign_id == campaign_id,
            RotationSessionModel.status.in_([s.value for s in ACTIVE_STATUSES]),
        )
    ).scalar_one_or_none()


def list_sessions(
    db: Session,
    account_id: UUID | None = None,
    status: SessionStatus | None = None,
) -> list[SessionSnapshot]:
    query = select(RotationSessionModel).order_by(RotationSessionModel.created_at.desc())
    if account_id is not None:
        query = query.where(RotationSessionModel.account_id == account_id)
    if status is not None:
        query = query.where(RotationSessionModel.status == status.value)
    return [to_snapshot(m) for m in db.execute(query).scalars()]


def list_due_session_ids(
    db: Session, now: datetime | None = None, limit: int | None = None
) -> list[UUID]:
    """Running sessions never checked or whose next check time has passed."""
    now = now or utcnow()
    query = (
        select(RotationSessionModel.id)
        .where(
            RotationSessionModel.status == SessionStatus.RUNNING.value,
            or_(
                RotationSessionModel.next_check_at.is_(None),
                RotationSessionModel.next_check_at <= now,
            ),
        )
        .order_by(
            RotationSessionModel.next_check_at.asc().nulls_first(),
            RotationSessionModel.created_at,
        )
    )
    if limit:
        query = query.limit(limit)
    return list(db.execute(query).scalars().all())


def list_active_campaigns(db: Session) -> list[tuple[UUID, int]]:
    """Distinct (account, campaign) pairs of non-terminal sessions."""
    rows = db.execute(
        select(RotationSessionModel.account_id, RotationSessionModel.campaign_id)
        .where(RotationSessionModel.status.in_([s.value for s in ACTIVE_STATUSES]))
        .distinct()
    ).all()
    return [(row[0], row[1]) for row in rows]


def open_step(
    db: Session,
    session_id: UUID,
    step_index: int,
    creative_ref: str,
    views_at_start: int,
    now: datetime,
) -> StepRecordModel:
    record = StepRecordModel(
        session_id=session_id,
        step_index=step_index,
        creative_ref=creative_ref,
        views_at_start=views_at_start,
        started_at=now,
    )
    db.add(record)
    return record


def close_open_step(db: Session, session_id: UUID, views_at_end: int, now: datetime) -> int:
    """Close the step record still open for a session. Returns rows closed."""
    records = db.execute(
        select(StepRecordModel).where(
            StepRecordModel.session_id == session_id,
            StepRecordModel.completed_at.is_(None),
        )
    ).scalars().all()
    for record in records:
        record.views_at_end = max(views_at_end, record.views_at_start)
        record.completed_at = now
    return len(records)


@dataclass(frozen=True)
class NewSessionParams:
    """Validated inputs for a new session, with configured defaults applied."""

    account_id: UUID
    campaign_id: int
    listing_id: int
    creatives: list[str]
    views_per_step: int
    top_up_threshold: int
    top_up_amount: int


def validate_new_session(
    db: Session,
    account_id: UUID,
    campaign_id: int,
    listing_id: int,
    creatives: Sequence[str],
    views_per_step: int | None = None,
    top_up_threshold: int | None = None,
    top_up_amount: int | None = None,
) -> NewSessionParams:
    """Check inputs and uniqueness without writing anything.

    Raises:
        ValidationError: Bad input or an active session already exists.
        NotFoundError: Unknown account.
    """
    cleaned = validate_creatives(creatives)
    _require_positive("campaign_id", campaign_id)
    _require_positive("listing_id", listing_id)
    views_per_step = _require_positive(
        "views_per_step",
        views_per_step if views_per_step is not None else settings.default_views_per_step,
    )
    top_up_threshold = _require_positive(
        "top_up_threshold",
        top_up_threshold if top_up_threshold is not None else settings.default_top_up_threshold,
    )
    top_up_amount = _require_positive(
        "top_up_amount",
        top_up_amount if top_up_amount is not None else settings.default_top_up_amount,
    )

    if db.get(AccountModel, account_id) is None:
        raise NotFoundError(f"Account not found: {account_id}")

    existing = find_active_session(db, account_id, campaign_id)
    if existing is not None:
        raise ValidationError(
            f"Campaign {campaign_id} already has an active rotation session ({existing.id})"
        )

    return NewSessionParams(
        account_id=account_id,
        campaign_id=campaign_id,
        listing_id=listing_id,
        creatives=cleaned,
        views_per_step=views_per_step,
        top_up_threshold=top_up_threshold,
        top_up_amount=top_up_amount,
    )


def create_session(
    db: Session,
    account_id: UUID,
    campaign_id: int,
    listing_id: int,
    creatives: Sequence[str],
    views_per_step: int | None = None,
    auto_top_up: bool = False,
    top_up_threshold: int | None = None,
    top_up_amount: int | None = None,
    metrics_since: date | None = None,
    start: bool = True,
    now: datetime | None = None,
) -> RotationSessionModel:
    """Validate and insert a session, running or as a draft.

    A running session gets its first step record immediately; the caller
    is responsible for having made ``creatives[0]`` live beforehand.

    Raises:
        ValidationError: Bad input or an active session already exists.
        NotFoundError: Unknown account.
    """
    params = validate_new_session(
        db,
        account_id,
        campaign_id,
        listing_id,
        creatives,
        views_per_step=views_per_step,
        top_up_threshold=top_up_threshold,
        top_up_amount=top_up_amount,
    )

    now = now or utcnow()
    status = SessionStatus.RUNNING if start else SessionStatus.DRAFT
    model = RotationSessionModel(
        account_id=params.account_id,
        campaign_id=params.campaign_id,
        listing_id=params.listing_id,
        creatives=params.creatives,
        views_per_step=params.views_per_step,
        current_step=0,
        views_at_step_start=0,
        cumulative_views=0,
        status=status.value,
        metrics_since=metrics_since or utctoday(),
        auto_top_up=bool(auto_top_up),
        top_up_threshold=params.top_up_threshold,
        top_up_amount=params.top_up_amount,
        next_check_at=None,
    )
    db.add(model)
    db.flush()

    if start:
        open_step(db, model.id, 0, params.creatives[0], 0, now)

    logger.info(
        "rotation_session_created",
        session_id=str(model.id),
        campaign_id=campaign_id,
        creatives=len(params.creatives),
        views_per_step=params.views_per_step,
        status=status.value,
    )
    return model


def pause_session(db: Session, session_id: UUID) -> SessionSnapshot:
    model = get_session_model(db, session_id, for_update=True)
    if model.status != SessionStatus.RUNNING:
        raise InvalidTransitionError(session_id, model.status, "pause")
    model.status = SessionStatus.PAUSED.value
    model.next_check_at = None
    logger.info("rotation_session_paused", session_id=str(session_id))
    return to_snapshot(model)


def resume_session(db: Session, session_id: UUID, now: datetime | None = None) -> SessionSnapshot:
    """Move a paused or draft session to running; it is checked on the next sweep.

    Resuming a draft starts its first step. The caller must have made the
    current creative live.
    """
    model = get_session_model(db, session_id, for_update=True)
    if model.status not in (SessionStatus.PAUSED, SessionStatus.DRAFT):
        raise InvalidTransitionError(session_id, model.status, "resume")

    if model.status == SessionStatus.DRAFT:
        now = now or utcnow()
        model.views_at_step_start = model.cumulative_views
        open_step(
            db,
            model.id,
            model.current_step,
            model.creatives[model.current_step],
            model.cumulative_views,
            now,
        )

    model.status = SessionStatus.RUNNING.value
    model.next_check_at = None
    logger.info("rotation_session_resumed", session_id=str(session_id))
    return to_snapshot(model)


def stop_session(db: Session, session_id: UUID, now: datetime | None = None) -> SessionSnapshot:
    model = get_session_model(db, session_id, for_update=True)
    if SessionStatus(model.status).is_terminal:
        raise InvalidTransitionError(session_id, model.status, "stop")

    now = now or utcnow()
    close_open_step(db, model.id, model.cumulative_views, now)
    model.status = SessionStatus.STOPPED.value
    model.next_check_at = None
    logger.info(
        "rotation_session_stopped",
        session_id=str(session_id),
        step=model.current_step,
        views=model.cumulative_views,
    )
    return to_snapshot(model)


def update_session_settings(
    db: Session,
    session_id: UUID,
    auto_top_up: bool | None = None,
    top_up_threshold: int | None = None,
    top_up_amount: int | None = None,
) -> SessionSnapshot:
    """Change top-up settings. The creative order and step threshold are fixed once created."""
    model = get_session_model(db, session_id, for_update=True)
    if SessionStatus(model.status).is_terminal:
        raise InvalidTransitionError(session_id, model.status, "update")

    if auto_top_up is not None:
        model.auto_top_up = auto_top_up
    if top_up_threshold is not None:
        model.top_up_threshold = _require_positive("top_up_threshold", top_up_threshold)
    if top_up_amount is not None:
        model.top_up_amount = _require_positive("top_up_amount", top_up_amount)
    return to_snapshot(model)


def record_check_error(db: Session, session_id: UUID, error: str, now: datetime) -> None:
    model = db.get(RotationSessionModel, session_id)
    if model is None:
        return
    model.last_error = error[:2000]
    model.last_error_at = now


def get_session_results(
    db: Session, session_id: UUID, now: datetime | None = None
) -> SessionResults:
    """Per-creative performance and the winning creative.

    Among steps that collected a full ``views_per_step``, the one that got
    there fastest wins. When no step did, the best views-per-hour wins.
    """
    model = get_session_model(db, session_id)
    now = now or utcnow()

    steps: list[StepResult] = []
    for record in model.steps:
        started_at = as_utc(record.started_at)
        completed_at = as_utc(record.completed_at)
        end_views = (
            record.views_at_end if record.views_at_end is not None else model.cumulative_views
        )
        collected = max(end_views - record.views_at_start, 0)
        hours = max(((completed_at or now) - started_at).total_seconds() / 3600, 0.0)
        steps.append(
            StepResult(
                step_index=record.step_index,
                creative_ref=record.creative_ref,
                views_at_start=record.views_at_start,
                views_at_end=record.views_at_end,
                views_collected=collected,
                started_at=started_at,
                completed_at=completed_at,
                duration_hours=round(hours, 3),
                views_per_hour=round(collected / hours, 2) if hours > 0 else 0.0,
            )
        )

    full = [
        s
        for s in steps
        if s.completed_at is not None and s.views_collected >= model.views_per_step
    ]
    winner: StepResult | None = None
    if full:
        winner = min(full, key=lambda s: s.duration_hours)
    else:
        measured = [s for s in steps if s.views_collected > 0]
        if measured:
            winner = max(measured, key=lambda s: s.views_per_hour)

    return SessionResults(
        session_id=model.id,
        status=SessionStatus(model.status),
        views_per_step=model.views_per_step,
        steps=steps,
        winner=winner,
    )
