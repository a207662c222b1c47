"""
Market Ledger — Configuration & Constants

Every threshold, priority knob, and connection setting lives here.
No hardcoded values in business logic.

Usage:
    from market_ledger.config import settings
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import field_validator
from pydantic_settings import BaseSettings


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Source(str, Enum):
    """Vendor feeds that produce price snapshots."""
    TCGPLAYER = "tcgplayer"          # primary marketplace
    SCRYFALL = "scryfall"            # marketplace aggregator
    CARDMARKET = "cardmarket"        # secondary marketplace
    PRICECHARTING = "pricecharting"  # graded price index
    EBAY = "ebay"                    # auction source
    AMAZON = "amazon"                # retail source


class PriceType(str, Enum):
    """Observation kinds a vendor column can carry."""
    MARKET = "market"
    TREND = "trend"
    MID = "mid"
    AVG_7D = "avg_7d"
    AVG_30D = "avg_30d"
    LOW = "low"
    HIGH = "high"
    LOOSE = "loose"
    CIB = "cib"
    NEW = "new"
    GRADED = "graded"
    FOIL = "foil"
    ETCHED = "etched"
    TIX = "tix"


class RuleType(str, Enum):
    """Price alert comparison direction."""
    ABOVE = "above"
    BELOW = "below"


class ExportKind(str, Enum):
    """CSV export flavours produced by the valuation layer."""
    PRICE_LOT = "price-lot"
    HIGH_VALUE = "high-value-filter"
    TAX_LOT = "tax-lot"
    INSURANCE = "insurance"
    MOVERS = "movers"


class SkipReason(str, Enum):
    """Non-fatal, per-row data-quality outcomes. Returned, never raised."""
    EMPTY_VALUE = "empty_value"
    UNPARSEABLE = "unparseable"
    NON_POSITIVE = "non_positive"
    OUT_OF_RANGE = "out_of_range"
    MISSING_ITEM_KEY = "missing_item_key"
    UNKNOWN_ITEM = "unknown_item"
    NO_CANDIDATE = "no_candidate"
    SOURCE_NOT_ALLOWED = "source_not_allowed"
    NO_PRICE = "no_price"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Central configuration for Market Ledger.

    Loads from environment variables with fallback defaults.
    """

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # -----------------------------------------------------------------------
    # Database
    # -----------------------------------------------------------------------
    DATABASE_URL: str = ""                  # required; checked before any job runs
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # -----------------------------------------------------------------------
    # Logging
    # -----------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"

    # -----------------------------------------------------------------------
    # Daily reconciliation
    # -----------------------------------------------------------------------
    DEFAULT_CURRENCY: str = "USD"
    PRIORITY_TABLE_VERSION: str = "2025-12-v1"
    SELECTION_CONFIDENCE_PRIORITY_FALLBACK: int = 70
    SELECTION_METHOD_PRIORITY_FALLBACK: str = "priority_fallback"

    # -----------------------------------------------------------------------
    # Backfill
    # -----------------------------------------------------------------------
    BACKFILL_DEFAULT_DAYS: int = 90
    BACKFILL_MAX_CONCURRENCY: int = 4       # concurrent upsert batches per day
    BACKFILL_UPSERT_BATCH_SIZE: int = 500

    # -----------------------------------------------------------------------
    # Transient I/O retry (store + vendor reads)
    # -----------------------------------------------------------------------
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_BACKOFF_SECONDS: float = 1.0

    # -----------------------------------------------------------------------
    # Price alerts
    # -----------------------------------------------------------------------
    ALERT_SOURCE_ALLOWLIST: str = "tcgplayer,cardmarket,ebay,amazon,scryfall,pricecharting"
    DISCORD_BOT_TOKEN: str = ""
    DISCORD_ALERT_CHANNEL_ID: int = 0

    # -----------------------------------------------------------------------
    # Valuation & exports
    # -----------------------------------------------------------------------
    HIGH_VALUE_THRESHOLD_CENTS: int = 25000    # $250.00
    INSURANCE_THRESHOLD_CENTS: int = 25000     # $250.00
    CONCENTRATION_TOP_N: int = 10
    MOVERS_DEFAULT_DAYS: int = 7
    MOVERS_MAX_DAYS: int = 90
    MOVERS_DEFAULT_ROWS: int = 100
    MOVERS_MAX_ROWS: int = 500

    # Static rates for the default converter (units of USD per 1 unit).
    # Rates are supplied, never fetched.
    FX_RATES_TO_USD: dict[str, Decimal] = {
        "USD": Decimal("1"),
        "EUR": Decimal("1.08"),
        "GBP": Decimal("1.27"),
        "CAD": Decimal("0.73"),
        "JPY": Decimal("0.0067"),
    }

    @field_validator("DEFAULT_CURRENCY")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("ALERT_SOURCE_ALLOWLIST")
    @classmethod
    def _known_sources_only(cls, v: str) -> str:
        known = {s.value for s in Source}
        entries = [part.strip().lower() for part in v.split(",") if part.strip()]
        unknown = [e for e in entries if e not in known]
        if unknown:
            raise ValueError(f"ALERT_SOURCE_ALLOWLIST contains unknown sources: {unknown}")
        return ",".join(entries)

    @property
    def alert_sources(self) -> frozenset[Source]:
        """Allow-listed sources as enum members."""
        return frozenset(
            Source(part) for part in self.ALERT_SOURCE_ALLOWLIST.split(",") if part
        )


# Singleton instance
settings = Settings()
