"""
TCGMaster — Raw Condition Mapping

Some price payloads only carry a near-mint figure (under a per-variant key
such as "Near Mint Holofoil") and no per-condition breakdown. For those,
the played conditions are derived from near-mint with fixed multipliers.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, NamedTuple

import structlog

logger = structlog.get_logger(__name__)


class RawCondition(str, Enum):
    """TCGplayer raw condition grades, valued as the price payload names them."""
    NEAR_MINT = "nearMint"
    LIGHTLY_PLAYED = "lightlyPlayed"
    MODERATELY_PLAYED = "moderatelyPlayed"
    HEAVILY_PLAYED = "heavilyPlayed"
    DAMAGED = "damaged"


class ConditionMapping(NamedTuple):
    condition: RawCondition
    price_multiplier: Decimal  # Applied to the near-mint price


# ---------------------------------------------------------------------------
# Mapping table
# ---------------------------------------------------------------------------

_CONDITION_MAP: dict[RawCondition, ConditionMapping] = {
    RawCondition.NEAR_MINT: ConditionMapping(RawCondition.NEAR_MINT, Decimal("1.00")),
    RawCondition.LIGHTLY_PLAYED: ConditionMapping(RawCondition.LIGHTLY_PLAYED, Decimal("0.75")),
    RawCondition.MODERATELY_PLAYED: ConditionMapping(RawCondition.MODERATELY_PLAYED, Decimal("0.50")),
    RawCondition.HEAVILY_PLAYED: ConditionMapping(RawCondition.HEAVILY_PLAYED, Decimal("0.30")),
    RawCondition.DAMAGED: ConditionMapping(RawCondition.DAMAGED, Decimal("0.15")),
}


def map_condition(condition: RawCondition) -> ConditionMapping:
    return _CONDITION_MAP[condition]


def derive_condition_prices(near_mint: float | None) -> dict[str, float | None]:
    """
    Build a full conditions block from a near-mint price.

    Each played price is rounded to the cent. A missing or zero near-mint
    price yields None for every played condition.

    Returns:
        Dict keyed by RawCondition value (nearMint, lightlyPlayed, ...).
    """
    if not near_mint:
        return {c.value: (near_mint if c is RawCondition.NEAR_MINT else None) for c in RawCondition}

    nm = Decimal(str(near_mint))
    derived: dict[str, float | None] = {}
    for condition, mapping in _CONDITION_MAP.items():
        if condition is RawCondition.NEAR_MINT:
            derived[condition.value] = float(near_mint)
            continue
        price = (nm * mapping.price_multiplier).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        derived[condition.value] = float(price)

    logger.debug("condition_prices_derived", near_mint=near_mint)
    return derived


def find_near_mint_variant_price(variants: dict[str, Any] | None) -> float | None:
    """
    Search a per-variant price block for the first "Near Mint ..." entry.

    Shape: {"Holofoil": {"Near Mint Holofoil": {"price": 12.5}, ...}, ...}
    """
    if not variants:
        return None
    for variant in variants.values():
        if not isinstance(variant, dict):
            continue
        for label, entry in variant.items():
            if "near mint" in label.lower() and isinstance(entry, dict):
                price = entry.get("price")
                if isinstance(price, (int, float)) and not isinstance(price, bool):
                    return float(price)
    return None
