"""
TCGMaster — PokemonPriceTracker API Client

Fetches card prices (raw conditions + eBay graded sales) and set listings
from the PokemonPriceTracker v2 API.

Base URL: https://www.pokemonpricetracker.com/api/v2
Auth: Bearer token
Credit cost: 1 per card, +1 with history, +1 with eBay data. Usage is
reported per response in the X-Credits-Used header and recorded in a
CreditLedger, which clients built from one context share for the day.

Errors are typed (src.errors): 429 → RateLimitedError, 401/403 →
UnauthorizedError, 404 or an empty body → NotFoundError, 5xx/transport →
UpstreamError, unparseable body → MalformedPayloadError. 429, 5xx and
transport errors are retried with exponential backoff before surfacing.
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from src.config import settings
from src.errors import (
    ConfigurationError,
    MalformedPayloadError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)
from src.utils.condition_map import derive_condition_prices, find_near_mint_variant_price
from src.utils.pricing import to_number_or_none

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Pydantic Response Models
# ---------------------------------------------------------------------------


class PPTSet(BaseModel):
    """Set listing entry."""
    id: str
    name: str
    releaseDate: str | None = None
    cardCount: int | None = None
    language: str | None = None
    tcgPlayerGroupId: str | None = None
    imageUrl: str | None = None

    @field_validator("id", "tcgPlayerGroupId", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str | None:
        return None if v is None else str(v)


class PPTConditions(BaseModel):
    nearMint: float | None = None
    lightlyPlayed: float | None = None
    moderatelyPlayed: float | None = None
    heavilyPlayed: float | None = None
    damaged: float | None = None


class PPTCardPrices(BaseModel):
    market: float | None = None
    low: float | None = None
    mid: float | None = None
    high: float | None = None
    conditions: PPTConditions = Field(default_factory=PPTConditions)


class PPTCard(BaseModel):
    """
    Card with prices.

    Newer API responses carry per-variant prices instead of a conditions
    block; those are normalized into `conditions` on validation, deriving
    played prices from near-mint.
    """
    id: str
    tcgPlayerId: str
    name: str
    setName: str | None = None
    setId: str | None = None
    cardNumber: str | None = None
    rarity: str | None = None
    artist: str | None = None
    prices: PPTCardPrices = Field(default_factory=PPTCardPrices)
    ebay: dict[str, Any] | None = None
    priceHistory: list[dict[str, Any]] | None = None
    imageCdnUrl: dict[str, str] | None = None
    lastUpdated: str | None = None

    @field_validator("id", "tcgPlayerId", "setId", "cardNumber", mode="before")
    @classmethod
    def coerce_str(cls, v: Any) -> str | None:
        return None if v is None else str(v)

    @field_validator("prices", mode="before")
    @classmethod
    def normalize_prices(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v

        conditions = v.get("conditions")
        if isinstance(conditions, dict):
            return {
                "market": to_number_or_none(v.get("market")),
                "low": to_number_or_none(v.get("low")),
                "mid": to_number_or_none(v.get("mid")),
                "high": to_number_or_none(v.get("high")),
                "conditions": {k: to_number_or_none(val) for k, val in conditions.items()},
            }

        nm_price = find_near_mint_variant_price(v.get("variants"))
        market = to_number_or_none(v.get("market"))
        if market is None:
            market = nm_price
        derived = derive_condition_prices(nm_price)
        derived["nearMint"] = nm_price if nm_price is not None else market
        return {
            "market": market,
            "low": to_number_or_none(v.get("low")),
            "mid": None,
            "high": None,
            "conditions": derived,
        }

    @property
    def sales_by_grade(self) -> dict[str, Any] | None:
        if not self.ebay:
            return None
        sales = self.ebay.get("salesByGrade")
        return sales if isinstance(sales, dict) else None

    @property
    def image_url(self) -> str | None:
        if self.imageCdnUrl:
            return self.imageCdnUrl.get("large") or self.imageCdnUrl.get("small")
        return None


class PPTCardPage(BaseModel):
    """One page of a card listing, with pagination normalized."""
    cards: list[PPTCard] = Field(default_factory=list)
    page: int = 1
    page_size: int = 0
    total_pages: int = 1
    total_cards: int = 0


# ---------------------------------------------------------------------------
# Credit Budget
# ---------------------------------------------------------------------------


class CreditLedger:
    """
    Daily PPT credit budget shared by every client built from one context.

    The count resets at the UTC day boundary.
    """

    def __init__(self, daily_limit: int | None = None):
        self.daily_limit = daily_limit or settings.PPT_DAILY_CREDIT_LIMIT
        self._used = 0
        self._day = datetime.now(timezone.utc).date()

    def _roll_day(self) -> None:
        today = datetime.now(timezone.utc).date()
        if today != self._day:
            self._day = today
            self._used = 0

    @property
    def used(self) -> int:
        self._roll_day()
        return self._used

    @property
    def remaining(self) -> int:
        return max(self.daily_limit - self.used, 0)

    def record(self, credits: int) -> None:
        self._roll_day()
        self._used += credits


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class PPTClient:
    """
    Async client for the PokemonPriceTracker v2 API.

    Usage:
        async with PPTClient() as client:
            card = await client.get_card("243172", include_ebay=True)
            cards = await client.get_cards_by_set("sv3pt5")
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        max_retries: int | None = None,
        base_backoff: float | None = None,
        timeout: float | None = None,
        daily_credit_limit: int | None = None,
        credits: CreditLedger | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.PPT_API_KEY
        self._base_url = base_url or settings.PPT_BASE_URL
        self._max_retries = max_retries if max_retries is not None else settings.PPT_MAX_RETRIES
        self._base_backoff = (
            base_backoff if base_backoff is not None else settings.PPT_BASE_BACKOFF_SECONDS
        )
        self._timeout = timeout or settings.PPT_REQUEST_TIMEOUT_SECONDS
        self._credits = credits if credits is not None else CreditLedger(daily_credit_limit)
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> PPTClient:
        if not self._api_key:
            logger.warning("ppt_api_key_missing")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Accept": "application/json",
            },
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -----------------------------------------------------------------------
    # Credentials & credits
    # -----------------------------------------------------------------------

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def require_credentials(self) -> None:
        """Raise ConfigurationError if no API key is configured."""
        if not self._api_key:
            raise ConfigurationError("PPT_API_KEY is not configured")

    @property
    def credits_used(self) -> int:
        return self._credits.used

    @property
    def credits_remaining(self) -> int:
        return self._credits.remaining

    def has_credits(self, needed: int = 1) -> bool:
        return self.credits_remaining >= needed

    def _track_credits(self, response: httpx.Response) -> None:
        header = response.headers.get("X-Credits-Used")
        if not header:
            return
        try:
            used = int(header)
        except ValueError:
            logger.warning("ppt_credits_header_invalid", value=header)
            return
        self._credits.record(used)

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str, str]:
        try:
            body = response.json()
        except ValueError:
            return response.reason_phrase or "API request failed", str(response.status_code)
        if not isinstance(body, dict):
            return "API request failed", str(response.status_code)
        message = body.get("message") or body.get("error") or "API request failed"
        return str(message), str(body.get("code") or response.status_code)

    async def _backoff(self, attempt: int) -> None:
        if attempt < self._max_retries:
            await asyncio.sleep(self._base_backoff * (2 ** attempt))

    async def _request(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Make a GET request with retry logic and exponential backoff."""
        assert self._client is not None, "Client not initialized. Use 'async with'."

        last_error: UpstreamError | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.get(path, params=params)
            except httpx.TimeoutException as e:
                last_error = UpstreamError(f"Request timed out: {path}")
                last_error.__cause__ = e
                logger.error("ppt_request_timeout", path=path, attempt=attempt + 1)
                await self._backoff(attempt)
                continue
            except httpx.RequestError as e:
                last_error = UpstreamError(f"Request failed: {e}")
                last_error.__cause__ = e
                logger.error("ppt_request_error", error=str(e), path=path, attempt=attempt + 1)
                await self._backoff(attempt)
                continue

            status = response.status_code
            if status == 429:
                message, code = self._error_details(response)
                last_error = RateLimitedError(message, status_code=status, code=code)
                logger.warning("ppt_rate_limited", attempt=attempt + 1, path=path)
                await self._backoff(attempt)
                continue

            if status >= 500:
                message, code = self._error_details(response)
                last_error = UpstreamError(message, status_code=status, code=code)
                logger.error("ppt_http_error", status_code=status, attempt=attempt + 1, path=path)
                await self._backoff(attempt)
                continue

            if status >= 400:
                message, code = self._error_details(response)
                logger.error("ppt_http_error", status_code=status, path=path, code=code)
                if status in (401, 403):
                    raise UnauthorizedError(message, status_code=status, code=code)
                if status == 404:
                    raise NotFoundError(message, status_code=status, code=code)
                raise UpstreamError(message, status_code=status, code=code)

            self._track_credits(response)
            try:
                return response.json()
            except ValueError as e:
                raise MalformedPayloadError(
                    f"Invalid JSON from {path}", status_code=status
                ) from e

        assert last_error is not None
        raise last_error

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def get_card(
        self,
        tcg_player_id: str,
        include_ebay: bool = True,
        include_history: bool = False,
        days: int | None = None,
    ) -> PPTCard:
        """
        Fetch one card with prices by TCGplayer id.

        Raises:
            NotFoundError: The response carried no card.
        """
        params: dict[str, Any] = {"tcgPlayerId": tcg_player_id, "language": "english"}
        if include_ebay:
            params["includeEbay"] = "true"
        if include_history:
            params["includeHistory"] = "true"
        if days:
            params["days"] = days

        logger.info("ppt_fetch_card", tcg_player_id=tcg_player_id, include_ebay=include_ebay)
        body = await self._request("/cards", params=params)

        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise NotFoundError(f"Card not found: {tcg_player_id}", status_code=404, code="NOT_FOUND")

        try:
            card = PPTCard.model_validate(data)
        except ValidationError as e:
            raise MalformedPayloadError(f"Unexpected card payload for {tcg_player_id}") from e

        logger.info(
            "ppt_fetch_card_complete",
            tcg_player_id=tcg_player_id,
            card_name=card.name,
            market=card.prices.market,
            credits_used=self.credits_used,
        )
        return card

    async def get_cards(
        self,
        set_id: str | None = None,
        search: str | None = None,
        include_ebay: bool = False,
        include_history: bool = False,
        days: int | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> PPTCardPage:
        """
        Fetch one page of cards.

        total_pages is derived from metadata.total and the requested page size.
        """
        params: dict[str, Any] = {"language": "english", "page": page}
        if set_id:
            params["setId"] = set_id
        if search:
            params["search"] = search
        if include_ebay:
            params["includeEbay"] = "true"
        if include_history:
            params["includeHistory"] = "true"
        if days:
            params["days"] = days
        if page_size:
            params["pageSize"] = page_size

        body = await self._request("/cards", params=params)
        if not isinstance(body, dict):
            raise MalformedPayloadError("Unexpected card listing payload")

        raw = body.get("data")
        items = raw if isinstance(raw, list) else ([raw] if raw else [])
        try:
            cards = [PPTCard.model_validate(item) for item in items]
        except ValidationError as e:
            raise MalformedPayloadError("Unexpected card in listing payload") from e

        metadata = body.get("metadata") or {}
        total = metadata.get("total") if isinstance(metadata, dict) else None
        total_cards = int(total) if isinstance(total, int) and total > 0 else len(cards)
        total_pages = math.ceil(total_cards / page_size) if total and page_size else 1

        return PPTCardPage(
            cards=cards,
            page=page,
            page_size=page_size or len(cards),
            total_pages=max(total_pages, 1),
            total_cards=total_cards,
        )

    async def get_cards_by_set(
        self,
        set_id: str,
        page_size: int | None = None,
        include_ebay: bool = False,
    ) -> list[PPTCard]:
        """Fetch every card in a set, paging until the reported total is exhausted."""
        page_size = page_size or settings.IMPORT_PAGE_SIZE
        all_cards: list[PPTCard] = []
        page = 1

        while True:
            result = await self.get_cards(
                set_id=set_id, include_ebay=include_ebay, page=page, page_size=page_size
            )
            all_cards.extend(result.cards)

            logger.debug(
                "ppt_fetch_set_page",
                set_id=set_id,
                page=page,
                total_pages=result.total_pages,
                fetched_so_far=len(all_cards),
            )

            if page >= result.total_pages:
                break
            page += 1

        logger.info("ppt_fetch_set_complete", set_id=set_id, total_cards=len(all_cards))
        return all_cards

    async def search_cards(self, query: str, page: int = 1, page_size: int | None = None) -> PPTCardPage:
        return await self.get_cards(search=query, page=page, page_size=page_size)

    async def get_sets(
        self,
        language: str | None = None,
        sort_by: str | None = None,
        sort_direction: str | None = None,
    ) -> list[PPTSet]:
        """Fetch the set listing. Accepts a bare list or a {"data": [...]} body."""
        params: dict[str, Any] = {}
        if language:
            params["language"] = language
        if sort_by:
            params["sortBy"] = sort_by
        if sort_direction:
            params["sortDirection"] = sort_direction

        body = await self._request("/sets", params=params or None)
        items = body.get("data") if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise MalformedPayloadError("Unexpected set listing payload")

        try:
            sets = [PPTSet.model_validate(item) for item in items]
        except ValidationError as e:
            raise MalformedPayloadError("Unexpected set in listing payload") from e

        logger.info("ppt_fetch_sets_complete", count=len(sets))
        return sets
