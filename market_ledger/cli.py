"""
Market Ledger — Batch Job Entrypoints

Run via:
    market-ledger run-normalizer --source tcgplayer
    market-ledger run-normalizer --source all
    market-ledger run-backfill --days 90 --currency USD [--dry-run]
    market-ledger run-backfill --start-date 2025-01-01 --end-date 2025-01-05
    market-ledger run-alert-scan
    market-ledger run-valuation-export --owner-id u1 --kind tax-lot --output lots.csv
    market-ledger run-valuation-export --owner-id u1 --kind movers --days 30

Exit status:
    0  success (per-row data-quality skips are not failures)
    1  unrecoverable run error (store unreachable, backfill aborted, vendor failed)
    2  configuration error or bad arguments
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from datetime import date
from typing import Any, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_ledger.config import ExportKind, Source, settings
from market_ledger.errors import BackfillAborted, ConfigurationError, LedgerError, NormalizationFailed
from market_ledger.main import check_database, configure_logging, create_db_engine, require_database_url
from market_ledger.pipeline.alerts import AlertEvaluator
from market_ledger.pipeline.backfill import BackfillOrchestrator, resolve_date_range
from market_ledger.pipeline.normalizer import SnapshotNormalizer
from market_ledger.pipeline.vendor_feeds import FEEDS, load_feed_rows_from_csv
from market_ledger.signals.delivery import DiscordAlertNotifier
from market_ledger.valuation.aggregator import ValuationAggregator
from market_ledger.valuation.exports import write_csv

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_RUN_ERROR = 1
EXIT_CONFIG_ERROR = 2


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date (YYYY-MM-DD): {value!r}")


def _currency(value: str) -> str:
    code = value.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise argparse.ArgumentTypeError(f"not an ISO currency code: {value!r}")
    return code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="market-ledger",
        description="Market price reconciliation and daily valuation batch jobs.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    sub = parser.add_subparsers(dest="command", required=True)

    norm = sub.add_parser("run-normalizer", help="Normalize vendor rows into price snapshots.")
    norm.add_argument(
        "--source",
        required=True,
        choices=sorted(s.value for s in Source) + ["all"],
        help="Vendor feed to ingest, or 'all'.",
    )
    norm.add_argument(
        "--csv",
        default=None,
        help="Read rows from a CSV dump instead of the vendor table (single source only).",
    )
    norm.add_argument(
        "--ingest-date",
        type=_parse_date,
        default=None,
        help="as_of_date for rows without a timestamp (default: today UTC).",
    )

    back = sub.add_parser("run-backfill", help="Materialize daily values over a date range.")
    back.add_argument("--start-date", type=_parse_date, default=None)
    back.add_argument("--end-date", type=_parse_date, default=None)
    back.add_argument(
        "--days",
        type=int,
        default=settings.BACKFILL_DEFAULT_DAYS,
        help="Trailing window size when --start-date is omitted (default: %(default)s).",
    )
    back.add_argument("--currency", type=_currency, default=settings.DEFAULT_CURRENCY)
    back.add_argument("--dry-run", action="store_true", help="Report the plan, write nothing.")
    back.add_argument("--max-concurrency", type=int, default=None)

    sub.add_parser("run-alert-scan", help="Evaluate every active price alert rule once.")

    exp = sub.add_parser("run-valuation-export", help="Value a collection and write a CSV export.")
    exp.add_argument("--owner-id", required=True)
    exp.add_argument("--kind", required=True, choices=[k.value for k in ExportKind])
    exp.add_argument("--currency", type=_currency, default=settings.DEFAULT_CURRENCY)
    exp.add_argument("--as-of", type=_parse_date, default=None, help="Valuation date (default: today UTC).")
    exp.add_argument("--threshold-cents", type=int, default=None)
    exp.add_argument(
        "--days", type=int, default=settings.MOVERS_DEFAULT_DAYS,
        help="movers: compare against the value this many days back (1-90).",
    )
    exp.add_argument("--limit", type=int, default=None, help="movers: maximum rows (1-500).")
    exp.add_argument("--output", default="-", help="Output path, or '-' for stdout.")

    return parser


def _print_summary(summary: dict[str, Any]) -> None:
    print(json.dumps(summary, default=str, sort_keys=True), file=sys.stderr)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


async def run_normalizer(
    args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]
) -> int:
    sources = sorted(FEEDS) if args.source == "all" else [Source(args.source)]
    rows = load_feed_rows_from_csv(args.csv) if args.csv else None

    normalizer = SnapshotNormalizer(session_factory)
    failed: list[str] = []
    for source in sources:
        try:
            report = await normalizer.run(FEEDS[source], rows=rows, ingest_date=args.ingest_date)
            _print_summary(report.model_dump())
        except NormalizationFailed as e:
            failed.append(e.source)

    if failed:
        logger.error("normalizer_vendors_failed", sources=failed)
        return EXIT_RUN_ERROR
    return EXIT_OK


async def run_backfill(
    args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]
) -> int:
    date_range = resolve_date_range(args.start_date, args.end_date, args.days)
    orchestrator = BackfillOrchestrator(session_factory, max_concurrency=args.max_concurrency)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, orchestrator.request_stop)
        loop.add_signal_handler(signal.SIGINT, orchestrator.request_stop)
    except NotImplementedError:
        logger.warning("signal_handlers_not_supported_on_platform")

    try:
        report = await orchestrator.run(date_range, args.currency, dry_run=args.dry_run)
    except BackfillAborted as e:
        _print_summary({**e.report.model_dump(), "aborted_on": e.day})
        return EXIT_RUN_ERROR

    _print_summary({**report.model_dump(), "total_upserted": report.total_upserted})
    return EXIT_OK


async def run_alert_scan(
    args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]
) -> int:
    async with DiscordAlertNotifier() as notifier:
        report = await AlertEvaluator(session_factory, notify=notifier).run()
    _print_summary(report.model_dump())
    return EXIT_OK


async def run_valuation_export(
    args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]
) -> int:
    aggregator = ValuationAggregator(session_factory, currency=args.currency)
    result = await aggregator.value_owner(args.owner_id, on=args.as_of)

    baselines = None
    if ExportKind(args.kind) is ExportKind.MOVERS:
        item_ids = sorted({v.holding.item_id for v in result.valuations})
        baselines = await aggregator.baselines_for(item_ids, result.as_of, args.days)

    def _write(out) -> None:
        write_csv(
            args.kind, result.valuations, aggregator.currency, out,
            args.threshold_cents, baselines=baselines, limit=args.limit,
        )

    if args.output == "-":
        _write(sys.stdout)
    else:
        with open(args.output, "w", newline="", encoding="utf-8") as fh:
            _write(fh)

    _print_summary(result.summary._asdict())
    return EXIT_OK


_JOBS = {
    "run-normalizer": run_normalizer,
    "run-backfill": run_backfill,
    "run-alert-scan": run_alert_scan,
    "run-valuation-export": run_valuation_export,
}


def _validate(args: argparse.Namespace) -> None:
    """Argument checks that argparse cannot express. Raises ValueError."""
    if args.command == "run-normalizer" and args.csv and args.source == "all":
        raise ValueError("--csv needs a single --source")
    if args.command == "run-backfill":
        resolve_date_range(args.start_date, args.end_date, args.days)
        if args.max_concurrency is not None and args.max_concurrency < 1:
            raise ValueError("--max-concurrency must be >= 1")


async def _dispatch(args: argparse.Namespace) -> int:
    require_database_url()
    engine, session_factory = await create_db_engine()
    try:
        if not getattr(args, "dry_run", False):
            await check_database(session_factory)
        return await _JOBS[args.command](args, session_factory)
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # CSV on stdout must not interleave with log lines.
    to_stdout = getattr(args, "output", None) == "-"

    try:
        configure_logging(args.log_level, stream=sys.stderr if to_stdout else sys.stdout)
        _validate(args)
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except ValueError as e:
        print(f"invalid arguments: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        return asyncio.run(_dispatch(args))
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except (LedgerError, SQLAlchemyError, OSError) as e:
        logger.error("job_failed", command=args.command, error=str(e), error_type=type(e).__name__)
        return EXIT_RUN_ERROR


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
