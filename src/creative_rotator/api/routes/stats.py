"""Campaign statistics endpoints."""

from datetime import date, timedelta
from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from creative_rotator.api.deps import SessionDep
from creative_rotator.services.campaign_stats import get_campaign_stats
from creative_rotator.utils.time_utils import utctoday

router = APIRouter(prefix="/stats", tags=["Stats"])


class CampaignStatsResponse(BaseModel):
    """Stored stats of the requested campaigns."""

    account_id: str
    date_from: date
    date_to: date
    campaigns: list[dict[str, Any]]


@router.get(
    "",
    response_model=CampaignStatsResponse,
    summary="Campaign stats",
    description="Daily impressions, clicks, conversions and spend collected by the stats sweep.",
)
async def campaign_stats(
    session: SessionDep,
    account_id: str,
    campaign_id: list[int] | None = Query(default=None),
    date_from: date | None = None,
    date_to: date | None = None,
) -> CampaignStatsResponse:
    """Get stored campaign stats; defaults to the last 7 days."""
    try:
        account_uuid = UUID(account_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid account ID",
        )

    date_to = date_to or utctoday()
    date_from = date_from or date_to - timedelta(days=6)
    if date_from > date_to:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="date_from must not be after date_to",
        )

    summaries = get_campaign_stats(session, account_uuid, date_from, date_to, campaign_id)
    return CampaignStatsResponse(
        account_id=account_id,
        date_from=date_from,
        date_to=date_to,
        campaigns=[s.to_dict() for s in summaries],
    )
