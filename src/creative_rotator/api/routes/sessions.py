"""Rotation session endpoints."""

from datetime import date, datetime
from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from creative_rotator.api.deps import RotationServiceDep
from creative_rotator.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    RotationError,
    ValidationError,
)
from creative_rotator.domain.models import SessionResults, SessionSnapshot, StepResult
from creative_rotator.logging import get_logger

router = APIRouter(prefix="/sessions", tags=["Sessions"])
logger = get_logger(__name__)


class StartSessionRequest(BaseModel):
    """Request to start rotating creatives on a campaign."""

    account_id: UUID = Field(..., description="Marketplace account UUID")
    campaign_id: int = Field(..., description="Advertising campaign id")
    listing_id: int = Field(..., description="Product card (nmId) whose main image rotates")
    creatives: list[str] = Field(..., description="Image URLs, shown in this order")
    views_per_step: int | None = Field(
        default=None, description="Impressions each creative gets before the next one"
    )
    auto_top_up: bool = Field(default=False, description="Keep the campaign budget funded")
    top_up_threshold: int | None = None
    top_up_amount: int | None = None
    metrics_since: date | None = Field(
        default=None, description="First day counted towards impressions (default: today)"
    )
    start: bool = Field(default=True, description="Start now; false creates a draft")


class UpdateSessionRequest(BaseModel):
    """Budget settings that may change while a session runs."""

    auto_top_up: bool | None = None
    top_up_threshold: int | None = None
    top_up_amount: int | None = None


class SessionResponse(BaseModel):
    """Current state of a rotation session."""

    id: str
    account_id: str
    campaign_id: int
    listing_id: int
    creatives: list[str]
    status: str
    current_step: int
    current_creative: str
    views_per_step: int
    views_at_step_start: int
    cumulative_views: int
    metrics_since: date
    auto_top_up: bool
    top_up_threshold: int
    top_up_amount: int
    next_check_at: datetime | None = None
    last_check_at: datetime | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None
    created_at: datetime | None = None


class StepResultResponse(BaseModel):
    """Performance of one creative."""

    step_index: int
    creative_ref: str
    views_at_start: int
    views_at_end: int | None
    views_collected: int
    started_at: datetime
    completed_at: datetime | None
    duration_hours: float
    views_per_hour: float


class SessionResultsResponse(BaseModel):
    """Per-step breakdown and winning creative."""

    session_id: str
    status: str
    views_per_step: int
    steps: list[StepResultResponse]
    winner: StepResultResponse | None = None


class CheckResponse(BaseModel):
    """Outcome of an immediate rotation check."""

    session_id: str
    outcome: str
    views: int | None = None
    from_step: int | None = None
    to_step: int | None = None
    error: str | None = None


def _parse_session_id(session_id: str) -> UUID:
    try:
        return UUID(session_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session ID",
        )


def _raise_http(error: RotationError) -> NoReturn:
    """Translate a domain error into the matching HTTP status."""
    if isinstance(error, InvalidTransitionError | PersistenceError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, ValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ProviderError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=code, detail=str(error)) from error


def _session_response(snapshot: SessionSnapshot) -> SessionResponse:
    return SessionResponse(
        id=str(snapshot.id),
        account_id=str(snapshot.account_id),
        campaign_id=snapshot.campaign_id,
        listing_id=snapshot.listing_id,
        creatives=list(snapshot.creatives),
        status=snapshot.status.value,
        current_step=snapshot.current_step,
        current_creative=snapshot.current_creative,
        views_per_step=snapshot.views_per_step,
        views_at_step_start=snapshot.views_at_step_start,
        cumulative_views=snapshot.cumulative_views,
        metrics_since=snapshot.metrics_since,
        auto_top_up=snapshot.auto_top_up,
        top_up_threshold=snapshot.top_up_threshold,
        top_up_amount=snapshot.top_up_amount,
        next_check_at=snapshot.next_check_at,
        last_check_at=snapshot.last_check_at,
        last_error=snapshot.last_error,
        last_error_at=snapshot.last_error_at,
        created_at=snapshot.created_at,
    )


def _step_response(step: StepResult) -> StepResultResponse:
    return StepResultResponse(
        step_index=step.step_index,
        creative_ref=step.creative_ref,
        views_at_start=step.views_at_start,
        views_at_end=step.views_at_end,
        views_collected=step.views_collected,
        started_at=step.started_at,
        completed_at=step.completed_at,
        duration_hours=step.duration_hours,
        views_per_hour=step.views_per_hour,
    )


def _results_response(results: SessionResults) -> SessionResultsResponse:
    return SessionResultsResponse(
        session_id=str(results.session_id),
        status=results.status.value,
        views_per_step=results.views_per_step,
        steps=[_step_response(s) for s in results.steps],
        winner=_step_response(results.winner) if results.winner else None,
    )


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start session",
    description="Create a rotation session and make its first creative live.",
)
async def start_session(
    request: StartSessionRequest,
    service: RotationServiceDep,
) -> SessionResponse:
    """Start a rotation session."""
    try:
        snapshot = await service.start_session(
            account_id=request.account_id,
            campaign_id=request.campaign_id,
            listing_id=request.listing_id,
            creatives=request.creatives,
            views_per_step=request.views_per_step,
            auto_top_up=request.auto_top_up,
            top_up_threshold=request.top_up_threshold,
            top_up_amount=request.top_up_amount,
            metrics_since=request.metrics_since,
            start=request.start,
        )
    except RotationError as e:
        logger.warning(
            "start_session_rejected",
            campaign_id=request.campaign_id,
            error=str(e),
            error_class=type(e).__name__,
        )
        _raise_http(e)

    logger.info(
        "session_started_via_api",
        session_id=str(snapshot.id),
        campaign_id=snapshot.campaign_id,
        status=snapshot.status.value,
    )
    return _session_response(snapshot)


@router.get(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Get session",
    description="Current step, impressions and status of a session.",
)
async def get_session_status(session_id: str, service: RotationServiceDep) -> SessionResponse:
    """Get session status."""
    try:
        return _session_response(service.get_status(_parse_session_id(session_id)))
    except RotationError as e:
        _raise_http(e)


@router.get(
    "/{session_id}/results",
    response_model=SessionResultsResponse,
    summary="Session results",
    description="Per-creative performance and the winning creative.",
)
async def get_session_results(
    session_id: str,
    service: RotationServiceDep,
) -> SessionResultsResponse:
    """Get per-step results."""
    try:
        return _results_response(service.get_results(_parse_session_id(session_id)))
    except RotationError as e:
        _raise_http(e)


@router.patch(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Update session",
    description="Change budget top-up settings of a session.",
)
async def update_session(
    session_id: str,
    request: UpdateSessionRequest,
    service: RotationServiceDep,
) -> SessionResponse:
    """Update top-up settings."""
    try:
        snapshot = service.update_session_settings(
            _parse_session_id(session_id),
            auto_top_up=request.auto_top_up,
            top_up_threshold=request.top_up_threshold,
            top_up_amount=request.top_up_amount,
        )
    except RotationError as e:
        _raise_http(e)
    return _session_response(snapshot)


@router.post(
    "/{session_id}/pause",
    response_model=SessionResponse,
    summary="Pause session",
)
async def pause_session(session_id: str, service: RotationServiceDep) -> SessionResponse:
    """Pause a running session."""
    try:
        return _session_response(service.pause_session(_parse_session_id(session_id)))
    except RotationError as e:
        _raise_http(e)


@router.post(
    "/{session_id}/resume",
    response_model=SessionResponse,
    summary="Resume session",
    description="Resume a paused session or start a draft.",
)
async def resume_session(session_id: str, service: RotationServiceDep) -> SessionResponse:
    """Resume a paused or draft session."""
    try:
        snapshot = await service.resume_session(_parse_session_id(session_id))
    except RotationError as e:
        _raise_http(e)
    return _session_response(snapshot)


@router.post(
    "/{session_id}/stop",
    response_model=SessionResponse,
    summary="Stop session",
)
async def stop_session(session_id: str, service: RotationServiceDep) -> SessionResponse:
    """Stop a session for good."""
    try:
        return _session_response(service.stop_session(_parse_session_id(session_id)))
    except RotationError as e:
        _raise_http(e)


@router.post(
    "/{session_id}/check",
    response_model=CheckResponse,
    summary="Check now",
    description="Fetch impressions and rotate immediately if a threshold was crossed.",
)
async def check_session(session_id: str, service: RotationServiceDep) -> CheckResponse:
    """Force a rotation check."""
    try:
        result = await service.force_check(_parse_session_id(session_id))
    except RotationError as e:
        _raise_http(e)
    return CheckResponse(**result.to_dict())
