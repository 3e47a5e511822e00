"""
TCGMaster — Engine Result Models

Pydantic models returned by the sync, trending and alerts engines and
stored (as JSON) in the fast-tier cache.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


class GradeData(BaseModel):
    """Sales summary for one grade bucket."""
    average: float | None = None
    median: float | None = None
    low: float | None = None
    high: float | None = None
    count: int = 0


class RawPrices(BaseModel):
    """Ungraded prices by physical condition."""
    nearMint: float | None = None
    lightlyPlayed: float | None = None
    moderatelyPlayed: float | None = None
    heavilyPlayed: float | None = None

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


class CardPrices(BaseModel):
    """A price snapshot: raw prices plus graded buckets keyed by normalized grade key."""
    raw: RawPrices = Field(default_factory=RawPrices)
    graded: dict[str, GradeData] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return self.raw.is_empty() and not self.graded


class CardSnapshot(BaseModel):
    """What the fast tier stores for a card's prices."""
    card_id: str | None = None
    tcg_player_id: str
    name: str | None = None
    prices: CardPrices
    market_price: float | None = None
    fetched_at: datetime
    ttl_hours: int


class CardWithPrices(BaseModel):
    """Result of an interactive price read."""
    card_id: str | None = None
    tcg_player_id: str
    name: str | None = None
    prices: CardPrices
    last_updated: datetime
    from_cache: bool = False
    stale_hours: float | None = None


# ---------------------------------------------------------------------------
# Job results
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    updated: int = 0
    errors: list[str] = Field(default_factory=list)
    message: str = ""


class ImportResult(BaseModel):
    cards_imported: int = 0
    errors: list[str] = Field(default_factory=list)


class SetSyncResult(BaseModel):
    synced: int = 0
    errors: list[str] = Field(default_factory=list)


class TrendingUpdateResult(BaseModel):
    updated: int = 0
    errors: list[str] = Field(default_factory=list)


class AlertCheckResult(BaseModel):
    checked: int = 0
    triggered: int = 0
    errors: list[str] = Field(default_factory=list)


class ImageFetchResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class PopulationResult(BaseModel):
    processed: int = 0
    updated: int = 0
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Trending
# ---------------------------------------------------------------------------


class TrendingCard(BaseModel):
    """Denormalized trending row, as served to the API layer."""
    card_id: str
    name: str
    set_name: str | None = None
    game: str | None = None
    image_url: str | None = None
    score: Decimal
    price_change_24h: Decimal = Decimal("0")
    volume_24h: int = 0
    search_count_24h: int = 0
    social_mentions_24h: int = 0


class MarketMovers(BaseModel):
    gainers: list[TrendingCard] = Field(default_factory=list)
    losers: list[TrendingCard] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class TriggeredAlert(BaseModel):
    alert_id: str
    user_id: str
    card_id: str
    card_name: str
    grade: str
    previous_price: Decimal
    current_price: Decimal
    percent_change: Decimal
    direction: str
    delivery_method: str


class PopulationEntry(BaseModel):
    """One grade's population count as returned by a population source."""
    grading_company: str
    grade: str
    count: int


class AlertSummary(BaseModel):
    """A user's alert with the card it watches, for listing."""
    id: str
    card_id: str
    card_name: str
    set_name: str | None = None
    image_url: str | None = None
    grade: str
    grading_company: str | None = None
    threshold_percent: Decimal
    direction: str
    baseline_price: Decimal | None = None
    is_active: bool
    last_triggered: datetime | None = None
    trigger_count: int = 0
    delivery_method: str
    created_at: datetime


class ROIResult(BaseModel):
    gain_loss: Decimal
    percent_change: Decimal
