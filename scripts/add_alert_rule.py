"""
Market Ledger — Price Alert Rule Registration Script

Creates a price_alert_rules row for a user. Rules normally come from the
user-facing app; this is for manual onboarding and for exercising the alert
scan end to end.

Usage:
    python scripts/add_alert_rule.py --user-id u1 --game pokemon --item-id sv1-1 --above 100.00
    python scripts/add_alert_rule.py --user-id u1 --game mtg --item-id abc --below 4.50 --source tcgplayer
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation

from market_ledger.config import RuleType, settings
from market_ledger.errors import ConfigurationError
from market_ledger.main import create_db_engine
from market_ledger.models.price_alert import PriceAlertRule
from market_ledger.utils.money import amount_to_cents


def _amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not an amount: {value!r}")
    if amount <= 0:
        raise argparse.ArgumentTypeError("threshold must be positive")
    return amount


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create a price alert rule (price_alert_rules row).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/add_alert_rule.py --user-id u1 --game pokemon --item-id sv1-1 --above 100.00
  python scripts/add_alert_rule.py --user-id u1 --game mtg --item-id abc --below 4.50 --source tcgplayer
""",
    )
    parser.add_argument("--user-id", required=True, help="Owner of the rule.")
    parser.add_argument("--game", required=True, help="Game of the target item (pokemon, mtg, ...).")
    parser.add_argument("--item-id", required=True, help="market_items.id to watch.")
    direction = parser.add_mutually_exclusive_group(required=True)
    direction.add_argument("--above", type=_amount, help="Fire when price goes above this amount.")
    direction.add_argument("--below", type=_amount, help="Fire when price goes below this amount.")
    parser.add_argument(
        "--source",
        default=None,
        choices=sorted(s.value for s in settings.alert_sources),
        help="Watch one vendor's live price instead of the daily value.",
    )
    parser.add_argument(
        "--currency",
        default=settings.DEFAULT_CURRENCY,
        help="Currency of the threshold (default: %(default)s).",
    )
    return parser.parse_args()


async def create_rule(args: argparse.Namespace) -> int:
    engine, session_factory = await create_db_engine()
    rule_type = RuleType.ABOVE if args.above is not None else RuleType.BELOW
    threshold = args.above if args.above is not None else args.below

    try:
        async with session_factory() as session:
            rule = PriceAlertRule(
                user_id=args.user_id,
                game=args.game,
                target_item_id=args.item_id,
                source=args.source,
                rule_type=rule_type.value,
                threshold_cents=amount_to_cents(threshold),
                currency=args.currency.upper(),
                active=True,
            )
            session.add(rule)
            await session.commit()
            return rule.id
    finally:
        await engine.dispose()


async def main() -> None:
    args = parse_args()

    try:
        rule_id = await create_rule(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        print(f"Failed to create rule: {e}", file=sys.stderr)
        sys.exit(1)

    print("Alert rule created successfully.")
    print(f"  price_alert_rules.id = {rule_id}")
    print(f"  target_item_id       = {args.item_id}")
    print(f"  source               = {args.source or '(daily value)'}")
    print()
    print("The next run-alert-scan will evaluate this rule.")


if __name__ == "__main__":
    asyncio.run(main())
