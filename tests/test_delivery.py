"""
Tests for the Discord alert delivery module.

Covers disabled state, the Notifier call path, HTTP success and failure via
respx, and embed formatting.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import httpx
import pytest
import respx

from market_ledger.pipeline.alerts import AlertContext
from market_ledger.signals.delivery import DiscordAlertNotifier, _fmt_alert_embed

CHANNEL_ID = 123456789
MESSAGES_URL = f"{DiscordAlertNotifier.DISCORD_API_BASE}/channels/{CHANNEL_ID}/messages"


def _context(rule_type: str = "above", source: str | None = "tcgplayer") -> AlertContext:
    return AlertContext(
        rule_id=7,
        user_id="user-1",
        game="pokemon",
        item_id="item-charizard",
        source=source,
        rule_type=rule_type,
        threshold_cents=10000,
        price_cents=15000,
        currency="USD",
        price_as_of=date(2025, 1, 5),
        fired_at=datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Test: disabled notifier
# ---------------------------------------------------------------------------

class TestDiscordAlertNotifierDisabled:

    def test_disabled_without_token(self) -> None:
        notifier = DiscordAlertNotifier(bot_token="", channel_id=CHANNEL_ID)
        assert notifier.enabled is False

    def test_disabled_without_channel(self) -> None:
        notifier = DiscordAlertNotifier(bot_token="token", channel_id=0)
        assert notifier.enabled is False

    @pytest.mark.asyncio
    async def test_send_alert_returns_false_when_disabled(self) -> None:
        async with DiscordAlertNotifier(bot_token="", channel_id=0) as notifier:
            assert await notifier.send_alert(_context()) is False

    @pytest.mark.asyncio
    async def test_call_logs_and_counts_as_delivered(self) -> None:
        async with DiscordAlertNotifier(bot_token="", channel_id=0) as notifier:
            assert await notifier(_context()) is True


# ---------------------------------------------------------------------------
# Test: HTTP delivery
# ---------------------------------------------------------------------------

class TestDiscordAlertNotifierSend:

    @pytest.mark.asyncio
    async def test_send_alert_posts_embed(self) -> None:
        with respx.mock:
            route = respx.post(MESSAGES_URL).mock(
                return_value=httpx.Response(200, json={"id": "1"})
            )
            async with DiscordAlertNotifier(bot_token="test-token", channel_id=CHANNEL_ID) as notifier:
                result = await notifier(_context())

        assert result is True
        assert route.called
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bot test-token"
        assert b"item-charizard" in request.content

    @pytest.mark.asyncio
    async def test_http_error_returns_false(self) -> None:
        with respx.mock:
            respx.post(MESSAGES_URL).mock(return_value=httpx.Response(403))
            async with DiscordAlertNotifier(bot_token="test-token", channel_id=CHANNEL_ID) as notifier:
                result = await notifier.send_alert(_context())

        assert result is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self) -> None:
        with respx.mock:
            respx.post(MESSAGES_URL).mock(side_effect=httpx.ConnectError("connection refused"))
            async with DiscordAlertNotifier(bot_token="test-token", channel_id=CHANNEL_ID) as notifier:
                result = await notifier.send_alert(_context())

        assert result is False

    @pytest.mark.asyncio
    async def test_send_without_context_manager_returns_false(self) -> None:
        notifier = DiscordAlertNotifier(bot_token="test-token", channel_id=CHANNEL_ID)
        assert await notifier.send_alert(_context()) is False


# ---------------------------------------------------------------------------
# Test: embed formatting
# ---------------------------------------------------------------------------

class TestFmtAlertEmbed:

    def test_above_embed(self) -> None:
        embed = _fmt_alert_embed(_context())
        fields = {f["name"]: f["value"] for f in embed["fields"]}

        assert "above" in embed["title"]
        assert embed["color"] == 0x2ECC71
        assert fields["Price"] == "150.00 USD"
        assert fields["Target"] == "above 100.00 USD"
        assert fields["Source"] == "tcgplayer"
        assert fields["Price as of"] == "2025-01-05"

    def test_below_embed_from_daily_value(self) -> None:
        embed = _fmt_alert_embed(_context(rule_type="below", source=None))
        fields = {f["name"]: f["value"] for f in embed["fields"]}

        assert "below" in embed["title"]
        assert embed["color"] == 0xE74C3C
        assert fields["Source"] == "daily value"
