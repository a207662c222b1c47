"""
Market Ledger — Price Alert Evaluator

Scans every active alert rule once:

    1. Resolve the current price for the rule's item:
         - no source      -> latest reconciled daily value (rule currency)
         - allow-listed   -> best current snapshot from that source only
         - anything else  -> skipped (source_not_allowed)
    2. is_triggered(rule_type, threshold, price)
    3. On fire: notify, then stamp last_triggered_at.

Each rule is isolated: a lookup error or a failed notification is logged and
counted, and the scan moves on. A rule whose notification failed is not
stamped.

There is no debounce: a rule that stays past its threshold fires on every
scan.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Collection, NamedTuple, Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_ledger.config import SkipReason, Source, settings
from market_ledger.engine.alert_rules import is_triggered
from market_ledger.engine.portfolio import PriceQuote
from market_ledger.models.price_alert import PriceAlertRule
from market_ledger.pipeline.store import (
    latest_daily_quote,
    load_item_candidates,
    pick_live_quote,
)
from market_ledger.utils.retry import retry_async

logger = structlog.get_logger(__name__)


class AlertContext(NamedTuple):
    """Everything a notifier needs to describe a fired rule."""
    rule_id: int
    user_id: str
    game: str
    item_id: str
    source: str | None
    rule_type: str
    threshold_cents: int
    price_cents: int
    currency: str
    price_as_of: date | None
    fired_at: datetime


# notify(context) -> False (or an exception) means "not delivered".
Notifier = Callable[[AlertContext], Awaitable[Optional[bool]]]


class AlertScanReport(BaseModel):
    evaluated: int = 0
    fired: int = 0
    not_triggered: int = 0
    failed: int = 0
    skipped: dict[str, int] = Field(default_factory=dict)

    def skip(self, reason: SkipReason) -> None:
        self.skipped[reason.value] = self.skipped.get(reason.value, 0) + 1


class AlertEvaluator:
    """
    One-shot scan of active price alert rules.

    Usage:
        async with DiscordAlertNotifier() as notifier:
            evaluator = AlertEvaluator(session_factory, notify=notifier)
            report = await evaluator.run()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notify: Notifier,
        allowed_sources: Collection[Source | str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session_factory = session_factory
        self._notify = notify
        sources = allowed_sources if allowed_sources is not None else settings.alert_sources
        self._allowed = frozenset(Source(s).value for s in sources)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def load_active_rules(self) -> list[PriceAlertRule]:
        async def _load() -> list[PriceAlertRule]:
            async with self.session_factory() as session:
                stmt = (
                    select(PriceAlertRule)
                    .where(PriceAlertRule.active.is_(True))
                    .order_by(PriceAlertRule.id)
                )
                return list((await session.execute(stmt)).scalars().all())

        return await retry_async(_load, operation="alert_rules_load")

    async def current_price(
        self, session: AsyncSession, rule: PriceAlertRule, today: date
    ) -> PriceQuote | SkipReason:
        """Price the rule compares against, or why there is none."""
        source = (rule.source or "").strip().lower()
        currency = (rule.currency or settings.DEFAULT_CURRENCY).upper()

        if not source:
            quote = await latest_daily_quote(session, rule.target_item_id, currency, today)
            return quote if quote is not None else SkipReason.NO_PRICE

        if source not in self._allowed:
            return SkipReason.SOURCE_NOT_ALLOWED

        candidates = await load_item_candidates(
            session,
            [rule.target_item_id],
            on_or_before=today,
            sources=[source],
            currency=currency,
        )
        quote = pick_live_quote(rule.target_item_id, currency, today, candidates)
        return quote if quote is not None else SkipReason.NO_PRICE

    async def _stamp(self, rule_id: int, fired_at: datetime) -> None:
        async def _write() -> None:
            async with self.session_factory() as session:
                await session.execute(
                    update(PriceAlertRule)
                    .where(PriceAlertRule.id == rule_id)
                    .values(last_triggered_at=fired_at)
                )
                await session.commit()

        await retry_async(_write, operation=f"alert_stamp:{rule_id}")

    async def evaluate_rule(self, rule: PriceAlertRule, report: AlertScanReport) -> None:
        now = self._clock()
        today = now.date()

        async def _price() -> PriceQuote | SkipReason:
            async with self.session_factory() as session:
                return await self.current_price(session, rule, today)

        price = await retry_async(_price, operation=f"alert_price:{rule.id}")
        if isinstance(price, SkipReason):
            report.skip(price)
            logger.info(
                "alert_rule_skipped",
                rule_id=rule.id,
                item_id=rule.target_item_id,
                source=rule.source,
                reason=price.value,
            )
            return

        if not is_triggered(rule.rule_type, rule.threshold_cents, price.value_cents):
            report.not_triggered += 1
            return

        context = AlertContext(
            rule_id=rule.id,
            user_id=rule.user_id,
            game=rule.game,
            item_id=rule.target_item_id,
            source=rule.source,
            rule_type=rule.rule_type,
            threshold_cents=rule.threshold_cents,
            price_cents=price.value_cents,
            currency=price.currency,
            price_as_of=price.as_of_date,
            fired_at=now,
        )

        delivered = await self._notify(context)
        if delivered is False:
            report.failed += 1
            logger.error("alert_notify_failed", rule_id=rule.id, user_id=rule.user_id)
            return

        await self._stamp(rule.id, now)
        report.fired += 1
        logger.info(
            "alert_fired",
            rule_id=rule.id,
            user_id=rule.user_id,
            item_id=rule.target_item_id,
            rule_type=rule.rule_type,
            threshold_cents=rule.threshold_cents,
            price_cents=price.value_cents,
            currency=price.currency,
        )

    async def run(self) -> AlertScanReport:
        """Evaluate every active rule once."""
        report = AlertScanReport()
        rules = await self.load_active_rules()
        logger.info("alert_scan_start", active_rules=len(rules))

        for rule in rules:
            report.evaluated += 1
            try:
                await self.evaluate_rule(rule, report)
            except Exception as e:
                report.failed += 1
                logger.error(
                    "alert_rule_failed",
                    rule_id=rule.id,
                    item_id=rule.target_item_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info(
            "alert_scan_complete",
            evaluated=report.evaluated,
            fired=report.fired,
            not_triggered=report.not_triggered,
            failed=report.failed,
            skipped=sum(report.skipped.values()),
        )
        return report


def describe_alert(context: AlertContext) -> dict[str, Any]:
    """Flat, JSON-safe view of a fired alert (for notifiers and logs)."""
    return {
        "rule_id": context.rule_id,
        "user_id": context.user_id,
        "game": context.game,
        "item_id": context.item_id,
        "source": context.source or "daily",
        "rule_type": context.rule_type,
        "threshold_cents": context.threshold_cents,
        "price_cents": context.price_cents,
        "currency": context.currency,
        "price_as_of": context.price_as_of.isoformat() if context.price_as_of else None,
        "fired_at": context.fired_at.isoformat(),
    }
