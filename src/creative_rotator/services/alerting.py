"""Best-effort notifications about rotation events (Telegram and Discord)."""

import html
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

import httpx

from creative_rotator.config import settings
from creative_rotator.logging import get_logger

logger = get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class AlertSeverity(StrEnum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Alert:
    """An alert to be sent via configured channels."""

    title: str
    message: str
    severity: AlertSeverity = AlertSeverity.INFO
    context: dict[str, Any] = field(default_factory=dict)
    session_id: UUID | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class AlertingService:
    """Sends alerts to every configured channel.

    Supports:
    - Telegram Bot API ``sendMessage`` (HTML parse mode)
    - Discord webhooks
    """

    DISCORD_COLORS = {
        AlertSeverity.INFO: 0x3498DB,  # Blue
        AlertSeverity.WARNING: 0xF39C12,  # Orange
        AlertSeverity.ERROR: 0xE74C3C,  # Red
    }

    def __init__(
        self,
        telegram_bot_token: str | None = None,
        telegram_chat_id: str | None = None,
        discord_webhook_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.telegram_bot_token = telegram_bot_token or settings.alert_telegram_bot_token
        self.telegram_chat_id = telegram_chat_id or settings.alert_telegram_chat_id
        self.discord_webhook_url = discord_webhook_url or settings.alert_discord_webhook_url
        self._transport = transport

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def enabled(self) -> bool:
        return self.telegram_enabled or bool(self.discord_webhook_url)

    async def send_alert(self, alert: Alert) -> bool:
        """Send an alert via all configured channels.

        Returns:
            True if at least one channel succeeded
        """
        results = []

        if self.telegram_enabled:
            try:
                results.append(await self._send_telegram(alert))
            except Exception as e:
                logger.error("telegram_alert_failed", error=str(e), error_class=type(e).__name__)
                results.append(False)

        if self.discord_webhook_url:
            try:
                results.append(await self._send_discord(alert))
            except Exception as e:
                logger.error("discord_alert_failed", error=str(e), error_class=type(e).__name__)
                results.append(False)

        return any(results) if results else False

    async def _send_telegram(self, alert: Alert) -> bool:
        lines = [f"<b>{html.escape(alert.title)}</b>", html.escape(alert.message)]
        for key, value in alert.context.items():
            label = html.escape(key.replace("_", " "))
            lines.append(f"{label}: <code>{html.escape(str(value))}</code>")

        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.post(
                f"{TELEGRAM_API_URL}/bot{self.telegram_bot_token}/sendMessage",
                json={
                    "chat_id": self.telegram_chat_id,
                    "text": "\n".join(lines),
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
                timeout=10.0,
            )
            response.raise_for_status()

        logger.info("telegram_alert_sent", severity=alert.severity.value, title=alert.title)
        return True

    async def _send_discord(self, alert: Alert) -> bool:
        fields = []
        if alert.session_id:
            fields.append({"name": "Session ID", "value": f"`{alert.session_id}`", "inline": True})
        for key, value in alert.context.items():
            str_value = str(value)
            if len(str_value) > 200:
                str_value = str_value[:197] + "..."
            fields.append(
                {
                    "name": key.replace("_", " ").title(),
                    "value": str_value,
                    "inline": True,
                }
            )

        payload = {
            "embeds": [
                {
                    "title": f"[{alert.severity.value.upper()}] {alert.title}",
                    "description": alert.message,
                    "color": self.DISCORD_COLORS.get(alert.severity, 0x3498DB),
                    "fields": fields[:25],  # Discord limit
                    "timestamp": alert.timestamp.isoformat(),
                    "footer": {"text": "Creative Rotator"},
                }
            ]
        }

        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.post(self.discord_webhook_url, json=payload, timeout=10.0)
            response.raise_for_status()

        logger.info("discord_alert_sent", severity=alert.severity.value, title=alert.title)
        return True

    async def notify(self, alert: Alert) -> None:
        """Fire-and-forget: never raises, never retries."""
        if not self.enabled:
            return
        try:
            await self.send_alert(alert)
        except Exception as e:
            logger.warning("notification_dropped", title=alert.title, error=str(e))


# Singleton instance
_alerting_service: AlertingService | None = None


def get_alerting_service() -> AlertingService:
    """Get the alerting service singleton."""
    global _alerting_service
    if _alerting_service is None:
        _alerting_service = AlertingService()
    return _alerting_service


def rotation_alert(
    session_id: UUID,
    campaign_id: int,
    from_step: int,
    to_step: int,
    creative_count: int,
    views: int,
    completed: bool,
) -> Alert:
    """Describe a step change or completion of a session."""
    if completed:
        title = f"Campaign {campaign_id}: rotation completed"
        message = f"All {creative_count} creatives collected their impressions."
    else:
        title = f"Campaign {campaign_id}: creative {to_step + 1}/{creative_count} is live"
        message = f"Switched from creative {from_step + 1} to {to_step + 1}."
    return Alert(
        title=title,
        message=message,
        severity=AlertSeverity.INFO,
        context={"campaign_id": campaign_id, "step": to_step, "cumulative_views": views},
        session_id=session_id,
    )


def top_up_alert(session_id: UUID, campaign_id: int, balance: float, amount: int) -> Alert:
    return Alert(
        title=f"Campaign {campaign_id}: budget topped up",
        message=f"Budget {balance:g} was below the threshold; deposited {amount}.",
        severity=AlertSeverity.WARNING,
        context={"campaign_id": campaign_id, "balance": balance, "deposit": amount},
        session_id=session_id,
    )
