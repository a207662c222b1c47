"""
Market Ledger — Discord Alert Delivery

Posts fired price alerts to a Discord channel as embeds, via the Discord Bot
HTTP API over httpx. An instance is itself a Notifier for AlertEvaluator:

    async with DiscordAlertNotifier() as notifier:
        await AlertEvaluator(session_factory, notify=notifier).run()

With no bot token the notifier is disabled: it logs each alert and reports
it as delivered, so a scan without a transport configured still stamps
rules the way a real delivery would.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from market_ledger.config import RuleType, settings
from market_ledger.pipeline.alerts import AlertContext, describe_alert
from market_ledger.utils.money import format_cents

logger = structlog.get_logger(__name__)

_COLOR_ABOVE = 0x2ECC71  # green
_COLOR_BELOW = 0xE74C3C  # red


def _fmt_alert_embed(context: AlertContext) -> dict[str, Any]:
    """Format a fired alert as a Discord embed dict."""
    above = context.rule_type == RuleType.ABOVE.value
    direction = "above" if above else "below"
    as_of = context.price_as_of.isoformat() if context.price_as_of else "N/A"

    return {
        "title": f"Price alert: {context.item_id} is {direction} your target",
        "color": _COLOR_ABOVE if above else _COLOR_BELOW,
        "fields": [
            {
                "name": "Price",
                "value": f"{format_cents(context.price_cents)} {context.currency}",
                "inline": True,
            },
            {
                "name": "Target",
                "value": f"{direction} {format_cents(context.threshold_cents)} {context.currency}",
                "inline": True,
            },
            {"name": "Source", "value": context.source or "daily value", "inline": True},
            {"name": "Game", "value": context.game, "inline": True},
            {"name": "Price as of", "value": as_of, "inline": True},
        ],
        "footer": {"text": f"rule {context.rule_id} · user {context.user_id}"},
        "timestamp": context.fired_at.isoformat(),
    }


class DiscordAlertNotifier:
    """
    Delivers fired price alerts to one Discord channel.

    Usage:
        async with DiscordAlertNotifier() as notifier:
            delivered = await notifier.send_alert(context)
    """

    DISCORD_API_BASE = "https://discord.com/api/v10"

    def __init__(self, bot_token: str | None = None, channel_id: int | None = None) -> None:
        self._token = bot_token if bot_token is not None else settings.DISCORD_BOT_TOKEN
        self._channel_id = channel_id if channel_id is not None else settings.DISCORD_ALERT_CHANNEL_ID
        self._enabled = bool(self._token) and bool(self._channel_id)
        self._client: httpx.AsyncClient | None = None

        if not self._enabled:
            logger.warning(
                "discord_notifier_disabled",
                reason="DISCORD_BOT_TOKEN or DISCORD_ALERT_CHANNEL_ID not set",
                source="discord",
                timestamp=datetime.now(timezone.utc).isoformat(),
            )

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def __aenter__(self) -> DiscordAlertNotifier:
        if self._enabled:
            self._client = httpx.AsyncClient(
                base_url=self.DISCORD_API_BASE,
                headers={
                    "Authorization": f"Bot {self._token}",
                    "Content-Type": "application/json",
                },
                timeout=30.0,
            )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send_alert(self, context: AlertContext) -> bool:
        """
        Post one alert embed.

        Returns:
            True if Discord accepted the message, False otherwise.
        """
        if not self._enabled or self._client is None:
            return False

        try:
            response = await self._client.post(
                f"/channels/{self._channel_id}/messages",
                json={"embeds": [_fmt_alert_embed(context)]},
            )
            response.raise_for_status()
            logger.info(
                "discord_alert_sent",
                rule_id=context.rule_id,
                channel_id=self._channel_id,
                source="discord",
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
            return True
        except httpx.HTTPError as exc:
            logger.error(
                "discord_alert_send_failed",
                rule_id=context.rule_id,
                channel_id=self._channel_id,
                error=str(exc),
                source="discord",
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
            return False

    async def __call__(self, context: AlertContext) -> bool:
        if not self._enabled:
            logger.info("discord_alert_logged_only", **describe_alert(context))
            return True
        return await self.send_alert(context)
