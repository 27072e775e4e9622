"""Campaign statistics: provider payload normalization, aggregation and storage.

The promotion API has changed its response shape several times, so the
normalizer accepts every shape seen so far:

- ``{"data": {"adverts": [...]}}``, ``{"adverts": [...]}``, ``{"data": [...]}``
- a bare list of adverts, or a single advert object
- daily rows under ``daily``, ``days`` or ``data.daily``

Missing or unparseable numbers count as zero. A failed provider call is
never turned into zero impressions: it propagates as a ProviderError.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter
from creative_rotator.db.models import CampaignStatsModel
from creative_rotator.db.session import get_session_context
from creative_rotator.domain.errors import PersistenceError
from creative_rotator.domain.models import DailyStats
from creative_rotator.logging import get_logger
from creative_rotator.services.resilience import ResilientCaller

logger = get_logger(__name__)

IMPRESSION_KEYS = ("impressions", "shows", "views")
CLICK_KEYS = ("clicks",)
CONVERSION_KEYS = ("orders", "conversions", "purchases")
SPEND_KEYS = ("spend", "cost", "expenses", "sum")
DATE_KEYS = ("date", "day")
ADVERT_ID_KEYS = ("advertId", "advert_id", "campaignId", "id")


def _to_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number < 0:  # NaN or negative
        return 0.0
    return number


def _first(row: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def _parse_day(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) >= 10:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _extract_adverts(raw: Any) -> list[dict[str, Any]]:
    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, dict)]
    if not isinstance(raw, dict):
        return []
    for key in ("adverts", "data"):
        inner = raw.get(key)
        if isinstance(inner, list):
            return [item for item in inner if isinstance(item, dict)]
        if isinstance(inner, dict):
            return _extract_adverts(inner)
    return [raw]


def _daily_rows(advert: dict[str, Any]) -> list[dict[str, Any]]:
    for key in ("daily", "days"):
        rows = advert.get(key)
        if isinstance(rows, list):
            return [row for row in rows if isinstance(row, dict)]
    nested = advert.get("data")
    if isinstance(nested, dict) and isinstance(nested.get("daily"), list):
        return [row for row in nested["daily"] if isinstance(row, dict)]
    # An advert carrying totals directly counts as one row
    if _first(advert, IMPRESSION_KEYS) is not None:
        return [advert]
    return []


def _matches_campaign(advert: dict[str, Any], campaign_id: int) -> bool:
    advert_id = _first(advert, ADVERT_ID_KEYS)
    if advert_id is None:
        return True
    try:
        return int(advert_id) == campaign_id
    except (TypeError, ValueError):
        return True


def normalize_daily_stats(raw: Any, campaign_id: int | None = None) -> list[DailyStats]:
    """Flatten a provider stats payload into daily rows, merged by date."""
    adverts = _extract_adverts(raw)
    if campaign_id is not None:
        adverts = [a for a in adverts if _matches_campaign(a, campaign_id)]

    merged: dict[date | None, DailyStats] = {}
    for advert in adverts:
        for row in _daily_rows(advert):
            day = _parse_day(_first(row, DATE_KEYS))
            stats = merged.setdefault(day, DailyStats(day=day))
            stats.impressions += int(_to_number(_first(row, IMPRESSION_KEYS)))
            stats.clicks += int(_to_number(_first(row, CLICK_KEYS)))
            stats.conversions += int(_to_number(_first(row, CONVERSION_KEYS)))
            stats.spend += _to_number(_first(row, SPEND_KEYS))

    return sorted(merged.values(), key=lambda s: (s.day is not None, s.day or date.min))


def total_impressions(rows: Iterable[DailyStats]) -> int:
    return sum(row.impressions for row in rows)


class MetricsAggregator:
    """Reads impressions for a campaign through the resilient caller."""

    def __init__(self, caller: ResilientCaller | None = None) -> None:
        self.caller = caller or ResilientCaller()

    async def fetch_daily_stats(
        self,
        adapter: MarketplaceAdapter,
        campaign_id: int,
        date_from: date,
        date_to: date,
    ) -> list[DailyStats]:
        if date_from > date_to:
            date_from = date_to
        raw = await self.caller.call(
            lambda: adapter.fetch_campaign_stats(campaign_id, date_from, date_to),
            operation="fetch_campaign_stats",
        )
        return normalize_daily_stats(raw, campaign_id)

    async def cumulative_impressions(
        self,
        adapter: MarketplaceAdapter,
        campaign_id: int,
        since: date,
        until: date | None = None,
    ) -> int:
        """Total impressions for ``campaign_id`` in ``[since, until or today]``.

        Raises:
            RateLimitedError: Provider kept rate limiting.
            ExternalServiceError: Any other provider failure.
        """
        until = until or datetime.now(UTC).date()
        rows = await self.fetch_daily_stats(adapter, campaign_id, since, until)
        total = total_impressions(rows)
        logger.debug(
            "cumulative_impressions_fetched",
            campaign_id=campaign_id,
            since=since.isoformat(),
            until=until.isoformat(),
            impressions=total,
        )
        return total


def _insert_for(db: Session) -> Any:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise PersistenceError(f"Upsert not supported on dialect '{dialect}'")


def upsert_campaign_stats(
    db: Session,
    account_id: UUID,
    campaign_id: int,
    rows: Iterable[DailyStats],
) -> int:
    """Insert or overwrite one row per day. Returns the number of days written."""
    values = [
        {
            "id": uuid4(),
            "account_id": account_id,
            "campaign_id": campaign_id,
            "stats_date": row.day,
            "impressions": row.impressions,
            "clicks": row.clicks,
            "conversions": row.conversions,
            "spend": round(row.spend, 2),
            "ctr": row.ctr,
        }
        for row in rows
        if row.day is not None
    ]
    if not values:
        return 0

    insert = _insert_for(db)
    stmt = insert(CampaignStatsModel).values(values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["account_id", "campaign_id", "stats_date"],
        set_={
            "impressions": stmt.excluded.impressions,
            "clicks": stmt.excluded.clicks,
            "conversions": stmt.excluded.conversions,
            "spend": stmt.excluded.spend,
            "ctr": stmt.excluded.ctr,
            "fetched_at": func.now(),
        },
    )
    db.execute(stmt)
    return len(values)


async def collect_campaign_stats(
    adapter: MarketplaceAdapter,
    account_id: UUID,
    campaign_id: int,
    date_from: date,
    date_to: date,
    aggregator: MetricsAggregator | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> int:
    """Fetch daily stats for a date range and upsert them.

    Rows the provider returns without a date are attributed to ``date_to``
    when the range is a single day, otherwise dropped.
    """
    aggregator = aggregator or MetricsAggregator()
    rows = await aggregator.fetch_daily_stats(adapter, campaign_id, date_from, date_to)

    dated: list[DailyStats] = []
    for row in rows:
        if row.day is None:
            if date_from != date_to:
                logger.debug("campaign_stats_undated_row_dropped", campaign_id=campaign_id)
                continue
            row.day = date_to
        dated.append(row)

    with get_session_context(session_factory) as db:
        written = upsert_campaign_stats(db, account_id, campaign_id, dated)

    logger.info(
        "campaign_stats_collected",
        account_id=str(account_id),
        campaign_id=campaign_id,
        date_from=date_from.isoformat(),
        date_to=date_to.isoformat(),
        days=written,
    )
    return written


@dataclass
class CampaignStatsSummary:
    """Totals and daily breakdown of one campaign over a date range."""

    campaign_id: int
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    spend: float = 0.0
    days: list[DailyStats] = field(default_factory=list)

    @property
    def ctr(self) -> float:
        if self.impressions <= 0:
            return 0.0
        return round(self.clicks / self.impressions * 100, 4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "spend": round(self.spend, 2),
            "ctr": self.ctr,
            "days": [
                {
                    "date": d.day.isoformat() if d.day else None,
                    "impressions": d.impressions,
                    "clicks": d.clicks,
                    "conversions": d.conversions,
                    "spend": round(d.spend, 2),
                    "ctr": d.ctr,
                }
                for d in self.days
            ],
        }


def get_campaign_stats(
    db: Session,
    account_id: UUID,
    date_from: date,
    date_to: date,
    campaign_ids: list[int] | None = None,
) -> list[CampaignStatsSummary]:
    """Stored stats grouped per campaign; campaigns without rows are omitted."""
    query = select(CampaignStatsModel).where(
        CampaignStatsModel.account_id == account_id,
        CampaignStatsModel.stats_date >= date_from,
        CampaignStatsModel.stats_date <= date_to,
    )
    if campaign_ids:
        query = query.where(CampaignStatsModel.campaign_id.in_(campaign_ids))
    query = query.order_by(CampaignStatsModel.campaign_id, CampaignStatsModel.stats_date)

    summaries: dict[int, CampaignStatsSummary] = {}
    for record in db.execute(query).scalars():
        summary = summaries.setdefault(
            record.campaign_id, CampaignStatsSummary(campaign_id=record.campaign_id)
        )
        summary.impressions += record.impressions
        summary.clicks += record.clicks
        summary.conversions += record.conversions
        summary.spend += record.spend
        summary.days.append(
            DailyStats(
                day=record.stats_date,
                impressions=record.impressions,
                clicks=record.clicks,
                conversions=record.conversions,
                spend=record.spend,
            )
        )

    return list(summaries.values())
