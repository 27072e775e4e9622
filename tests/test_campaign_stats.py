"""Tests for campaign stats normalization, aggregation and storage."""

from datetime import date
from uuid import uuid4

import pytest

from creative_rotator.adapters.marketplace.stub import http_error
from creative_rotator.db.session import get_session_context
from creative_rotator.domain.errors import ExternalServiceError
from creative_rotator.services.campaign_stats import (
    MetricsAggregator,
    collect_campaign_stats,
    get_campaign_stats,
    normalize_daily_stats,
    total_impressions,
)
from creative_rotator.services.resilience import ResilientCaller


class TestNormalizeDailyStats:
    def test_nested_adverts_with_days(self) -> None:
        raw = {
            "data": {
                "adverts": [
                    {
                        "advertId": 101,
                        "days": [
                            {"date": "2026-10-18T00:00:00Z", "views": 400, "clicks": 8},
                            {"date": "2026-10-19T00:00:00Z", "views": 600, "clicks": 12},
                        ],
                    }
                ]
            }
        }

        rows = normalize_daily_stats(raw, campaign_id=101)

        assert [r.day for r in rows] == [date(2026, 10, 18), date(2026, 10, 19)]
        assert total_impressions(rows) == 1000
        assert rows[1].ctr == 2.0

    def test_bare_list_filters_other_campaigns(self) -> None:
        raw = [
            {"advertId": 101, "daily": [{"date": "2026-10-19", "shows": 50}]},
            {"advertId": 202, "daily": [{"date": "2026-10-19", "shows": 999}]},
        ]

        rows = normalize_daily_stats(raw, campaign_id=101)

        assert total_impressions(rows) == 50

    def test_rows_for_the_same_day_are_merged(self) -> None:
        raw = {
            "adverts": [
                {"id": 7, "days": [{"date": "2026-10-19", "views": 10, "orders": 1, "sum": 2.5}]},
                {"id": 7, "days": [{"date": "2026-10-19", "views": 5, "orders": 2, "sum": 1.5}]},
            ]
        }

        rows = normalize_daily_stats(raw)

        assert len(rows) == 1
        assert rows[0].impressions == 15
        assert rows[0].conversions == 3
        assert rows[0].spend == pytest.approx(4.0)

    def test_totals_without_daily_rows(self) -> None:
        rows = normalize_daily_stats({"advertId": 3, "impressions": "120", "clicks": None})

        assert len(rows) == 1
        assert rows[0].day is None
        assert rows[0].impressions == 120
        assert rows[0].clicks == 0

    @pytest.mark.parametrize("raw", [None, [], {}, {"data": []}, "unexpected"])
    def test_empty_payloads(self, raw: object) -> None:
        assert total_impressions(normalize_daily_stats(raw)) == 0

    def test_garbage_numbers_count_as_zero(self) -> None:
        raw = [{"days": [{"date": "2026-10-19", "views": "n/a", "clicks": -4, "sum": "NaN"}]}]

        rows = normalize_daily_stats(raw)

        assert rows[0].impressions == 0
        assert rows[0].clicks == 0
        assert rows[0].spend == 0.0


class TestMetricsAggregator:
    @pytest.mark.asyncio
    async def test_cumulative_impressions_from_stub(self, marketplace) -> None:
        marketplace.impressions[101] = 1234
        aggregator = MetricsAggregator(ResilientCaller(max_attempts=1))

        total = await aggregator.cumulative_impressions(marketplace, 101, date(2026, 10, 1))

        assert total == 1234

    @pytest.mark.asyncio
    async def test_provider_failure_is_not_zero(self, marketplace) -> None:
        marketplace.fail_next("stats", http_error(503))
        aggregator = MetricsAggregator(ResilientCaller(max_attempts=1))

        with pytest.raises(ExternalServiceError):
            await aggregator.cumulative_impressions(marketplace, 101, date(2026, 10, 1))


class TestCollectCampaignStats:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, marketplace, account_id, session_factory) -> None:
        marketplace.impressions[101] = 500
        marketplace.clicks[101] = 25
        aggregator = MetricsAggregator(ResilientCaller(max_attempts=1))
        day = date(2026, 10, 19)

        for _ in range(2):
            written = await collect_campaign_stats(
                marketplace,
                account_id,
                101,
                day,
                day,
                aggregator=aggregator,
                session_factory=session_factory,
            )
            assert written == 1

        marketplace.impressions[101] = 800
        await collect_campaign_stats(
            marketplace,
            account_id,
            101,
            day,
            day,
            aggregator=aggregator,
            session_factory=session_factory,
        )

        with get_session_context(session_factory) as db:
            summaries = get_campaign_stats(db, account_id, day, day)

        assert len(summaries) == 1
        summary = summaries[0]
        assert summary.campaign_id == 101
        assert len(summary.days) == 1
        assert summary.impressions == 800
        assert summary.clicks == 25
        assert summary.to_dict()["ctr"] == pytest.approx(3.125)

    def test_unknown_account_has_no_stats(self, session_factory) -> None:
        with get_session_context(session_factory) as db:
            assert get_campaign_stats(db, uuid4(), date(2026, 10, 1), date(2026, 10, 19)) == []
