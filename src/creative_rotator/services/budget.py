"""Automatic campaign budget top-up."""

from dataclasses import dataclass
from typing import Any

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter
from creative_rotator.config import settings
from creative_rotator.domain.models import SessionSnapshot
from creative_rotator.logging import get_logger
from creative_rotator.services.alerting import AlertingService, get_alerting_service, top_up_alert
from creative_rotator.services.resilience import ResilientCaller

logger = get_logger(__name__)

BUDGET_KEYS = ("total", "budget", "cash")


@dataclass
class TopUpResult:
    """Budget observed for a campaign and what was deposited (0 when above the floor)."""

    campaign_id: int
    balance: float
    threshold: int
    deposited: int = 0

    @property
    def topped_up(self) -> bool:
        return self.deposited > 0


def parse_budget_total(raw: Any) -> float | None:
    """Remaining budget from a provider response, or None when absent."""
    if isinstance(raw, dict) and isinstance(raw.get("data"), dict):
        raw = raw["data"]
    if not isinstance(raw, dict):
        return None
    for key in BUDGET_KEYS:
        value = raw.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


class BudgetGuard:
    """Deposits ``top_up_amount`` when a campaign's budget drops below ``top_up_threshold``.

    Never raises: a failed budget read or deposit is logged and the top-up is
    skipped until the next run.
    """

    def __init__(
        self,
        caller: ResilientCaller | None = None,
        notifier: AlertingService | None = None,
    ) -> None:
        self.caller = caller or ResilientCaller()
        self.notifier = notifier

    async def maybe_top_up(
        self, adapter: MarketplaceAdapter, session: SessionSnapshot
    ) -> TopUpResult | None:
        if not session.auto_top_up:
            return None

        campaign_id = session.campaign_id
        log = logger.bind(session_id=str(session.id), campaign_id=campaign_id)

        try:
            raw = await self.caller.call(
                lambda: adapter.get_campaign_budget(campaign_id),
                operation="get_campaign_budget",
            )
            balance = parse_budget_total(raw)
            if balance is None:
                log.warning("budget_total_missing", response=str(raw)[:200])
                return None

            result = TopUpResult(
                campaign_id=campaign_id,
                balance=balance,
                threshold=session.top_up_threshold,
            )
            if balance >= session.top_up_threshold:
                return result

            await self.caller.call(
                lambda: adapter.deposit_budget(campaign_id, session.top_up_amount),
                operation="deposit_budget",
            )
            result.deposited = session.top_up_amount
        except Exception as e:
            log.warning("budget_top_up_failed", error=str(e), error_class=type(e).__name__)
            return None

        log.info("budget_topped_up", balance=balance, deposited=result.deposited)
        if settings.alert_on_top_up:
            notifier = self.notifier or get_alerting_service()
            await notifier.notify(top_up_alert(session.id, campaign_id, balance, result.deposited))
        return result
