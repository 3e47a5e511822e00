"""
TCGMaster — Price Transformation Utilities

Pure helpers shared by the sync, trending and alerts engines:
- grade-key normalization and upstream graded-sales parsing
- value-tiered TTL policy
- deterministic set priority for import ordering
- percent change, staleness and timezone helpers
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from src.config import PriceTier, settings
from src.schemas import CardPrices, GradeData

_GRADE_KEY_STRIP = re.compile(r"[\s_.\-]")
_SLUG_STRIP = re.compile(r"[^\w\s-]")
_SLUG_SPACES = re.compile(r"\s+")
_SLUG_DASHES = re.compile(r"--+")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_grade_key(key: str) -> str:
    """
    Normalize an upstream grade label into a cache map key.

    "PSA 10", "psa-10", "PSA_10" and "psa.10" all become "psa10".
    Idempotent: normalizing an already-normalized key returns it unchanged.
    """
    return _GRADE_KEY_STRIP.sub("", key.lower())


def to_number_or_none(value: Any) -> float | None:
    """Return value as a float if it is a finite int/float, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def normalize_sales_by_grade(sales_by_grade: dict[str, Any] | None) -> dict[str, GradeData]:
    """
    Convert the upstream eBay sales-by-grade block into normalized GradeData.

    Upstream has used several field spellings over time:
    average | averagePrice | smartMarketPrice.price, median | medianPrice,
    low | minPrice, high | maxPrice. Non-dict entries are ignored.
    """
    graded: dict[str, GradeData] = {}
    if not sales_by_grade:
        return graded

    for grade, data in sales_by_grade.items():
        if not isinstance(data, dict):
            continue
        smart = data.get("smartMarketPrice")
        smart_price = smart.get("price") if isinstance(smart, dict) else None
        count = data.get("count")

        graded[normalize_grade_key(str(grade))] = GradeData(
            average=to_number_or_none(_first_present(data.get("average"), data.get("averagePrice"), smart_price)),
            median=to_number_or_none(_first_present(data.get("median"), data.get("medianPrice"))),
            low=to_number_or_none(_first_present(data.get("low"), data.get("minPrice"))),
            high=to_number_or_none(_first_present(data.get("high"), data.get("maxPrice"))),
            count=int(count) if to_number_or_none(count) is not None else 0,
        )
    return graded


def slugify(text: str) -> str:
    slug = _SLUG_STRIP.sub("", text.lower())
    slug = _SLUG_SPACES.sub("-", slug)
    slug = _SLUG_DASHES.sub("-", slug)
    return slug.strip()


# ---------------------------------------------------------------------------
# TTL policy
# ---------------------------------------------------------------------------


def determine_price_tier(near_mint: float | Decimal | None) -> PriceTier:
    nm = Decimal(str(near_mint)) if near_mint else Decimal("0")
    if nm > settings.HIGH_VALUE_THRESHOLD:
        return PriceTier.HIGH
    if nm > settings.MID_VALUE_THRESHOLD:
        return PriceTier.MID
    return PriceTier.LOW


def determine_cache_ttl_hours(near_mint: float | Decimal | None) -> int:
    """
    Snapshot TTL in hours, inversely related to value.

    NM > $1000 → 1h, NM > $100 → 2h, everything else (including no price) → 4h.
    """
    tier = determine_price_tier(near_mint)
    if tier is PriceTier.HIGH:
        return settings.HIGH_VALUE_TTL_HOURS
    if tier is PriceTier.MID:
        return settings.MID_VALUE_TTL_HOURS
    return settings.LOW_VALUE_TTL_HOURS


def snapshot_ttl_hours(prices: CardPrices) -> int:
    return determine_cache_ttl_hours(prices.raw.nearMint)


# ---------------------------------------------------------------------------
# Set priority
# ---------------------------------------------------------------------------


def calculate_set_priority(set_name: str, index: int) -> int:
    """
    Deterministic import priority for a set.

    Vintage sets rank first, modern chase sets second, everything else by
    recency index (index 0 is the newest in the upstream listing).
    """
    name = set_name.lower()
    if any(v in name for v in settings.VINTAGE_SETS):
        return settings.SET_PRIORITY_VINTAGE_BASE - index
    if any(m in name for m in settings.MODERN_CHASE_SETS):
        return settings.SET_PRIORITY_MODERN_BASE - index
    return settings.SET_PRIORITY_DEFAULT_BASE - index


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


def resolve_grade_price(
    prices: CardPrices | dict[str, Any],
    grade: str,
    grading_company: str | None = None,
) -> float | None:
    """
    Current price for an alert/collection grade.

    'raw' reads the near-mint raw price. Anything else is looked up in the
    graded map by normalized key; a bare grade such as "10" is retried with
    the grading company prefixed ("psa10").
    """
    if isinstance(prices, dict):
        prices = CardPrices.model_validate(prices)

    if normalize_grade_key(grade) == "raw":
        return prices.raw.nearMint

    key = normalize_grade_key(grade)
    data = prices.graded.get(key)
    if data is None and grading_company:
        data = prices.graded.get(normalize_grade_key(f"{grading_company}{grade}"))
    return data.average if data else None


def percent_change(previous: Decimal, current: Decimal) -> Decimal:
    """Percent change from previous to current. Caller guarantees previous != 0."""
    return (current - previous) / previous * Decimal("100")


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


def ensure_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_since(value: datetime, now: datetime | None = None) -> float:
    """Hours elapsed since value, rounded to 0.1."""
    now = now or datetime.now(timezone.utc)
    elapsed = (now - ensure_utc(value)).total_seconds() / 3600
    return float(Decimal(str(elapsed)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def expires_at_for(fetched_at: datetime, ttl_hours: int) -> datetime:
    return ensure_utc(fetched_at) + timedelta(hours=ttl_hours)
