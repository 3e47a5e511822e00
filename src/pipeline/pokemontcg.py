"""
TCGMaster — pokemontcg.io API Client

Resolves Pokemon card artwork. Cards are looked up by their pokemontcg.io id
when we have one, otherwise searched by name within the mapped set.

Base URL: https://api.pokemontcg.io/v2/
Auth: optional X-Api-Key header (higher rate limit)
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from src.config import settings
from src.errors import MalformedPayloadError, NotFoundError, RateLimitedError, UpstreamError

logger = structlog.get_logger(__name__)

BASE_URL = "https://api.pokemontcg.io/v2"

# Our set slugs → pokemontcg.io set ids, for sets whose ids can't be derived.
SET_ID_MAP: dict[str, str] = {
    "base-set": "base1",
    "jungle": "base2",
    "fossil": "base3",
    "base-set-2": "base4",
    "team-rocket": "base5",
    "gym-heroes": "gym1",
    "gym-challenge": "gym2",
    "neo-genesis": "neo1",
    "neo-discovery": "neo2",
    "neo-revelation": "neo3",
    "neo-destiny": "neo4",
    "legendary-collection": "base6",
    "expedition-base-set": "ecard1",
    "aquapolis": "ecard2",
    "skyridge": "ecard3",
    "promo": "basep",
    "southern-islands": "si1",
}


# ---------------------------------------------------------------------------
# Pydantic Response Models
# ---------------------------------------------------------------------------


class SetInfo(BaseModel):
    id: str
    name: str


class CardImages(BaseModel):
    small: str | None = None
    large: str | None = None


class CardData(BaseModel):
    """Card entry; only the fields needed to locate its artwork."""
    id: str = Field(..., description="Canonical card ID: {set_code}-{card_number}")
    name: str
    number: str | None = None
    set: SetInfo | None = None
    images: CardImages = Field(default_factory=CardImages)

    @property
    def image_url(self) -> str | None:
        return self.images.large or self.images.small


class CardListResponse(BaseModel):
    data: list[CardData] = Field(default_factory=list)
    page: int = 1
    pageSize: int = 250
    totalCount: int = 0


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class PokemonTCGClient:
    """
    Async client for the pokemontcg.io v2 API.

    Usage:
        async with PokemonTCGClient() as client:
            card = await client.fetch_card("base1-4")
            card = await client.find_card("Charizard", "base-set")
    """

    def __init__(
        self,
        api_key: str | None = None,
        max_retries: int = 3,
        base_backoff: float = 1.0,
        timeout: float = 10.0,
    ):
        self._api_key = settings.POKEMONTCG_API_KEY if api_key is None else api_key
        self._max_retries = max_retries
        self._base_backoff = base_backoff
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> PokemonTCGClient:
        headers: dict[str, str] = {}
        if self._api_key:
            headers["X-Api-Key"] = self._api_key
        self._client = httpx.AsyncClient(
            base_url=BASE_URL,
            headers=headers,
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def _request(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """GET with retry on 429, 5xx and transport errors."""
        assert self._client is not None, "Client not initialized. Use 'async with'."

        last_error: UpstreamError | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.get(path, params=params)
            except httpx.RequestError as e:
                last_error = UpstreamError(f"pokemontcg.io transport error: {e}")
                logger.error("pokemontcg_request_error", error=str(e), attempt=attempt + 1, path=path)
            else:
                if response.status_code == 404:
                    raise NotFoundError(f"pokemontcg.io: not found ({path})", status_code=404)
                if response.status_code == 429:
                    last_error = RateLimitedError("pokemontcg.io rate limited", status_code=429)
                    logger.warning("pokemontcg_rate_limited", attempt=attempt + 1)
                elif response.status_code >= 500:
                    last_error = UpstreamError(
                        f"pokemontcg.io server error {response.status_code}",
                        status_code=response.status_code,
                    )
                    logger.error("pokemontcg_http_error", status_code=response.status_code, path=path)
                elif response.status_code >= 400:
                    raise UpstreamError(
                        f"pokemontcg.io request failed: {response.status_code}",
                        status_code=response.status_code,
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise MalformedPayloadError(f"pokemontcg.io returned invalid JSON: {e}") from e

            if attempt < self._max_retries:
                await asyncio.sleep(self._base_backoff * (2 ** attempt))

        assert last_error is not None
        raise last_error

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def fetch_card(self, card_id: str) -> CardData | None:
        """
        Fetch a card by its pokemontcg.io id (e.g. "base1-4").

        Returns None when the id is unknown upstream.
        """
        try:
            data = await self._request(f"/cards/{card_id}")
        except NotFoundError:
            logger.info("pokemontcg_card_not_found", card_id=card_id)
            return None
        try:
            return CardData.model_validate(data.get("data", data))
        except ValidationError as e:
            raise MalformedPayloadError(f"pokemontcg.io card payload invalid: {e}") from e

    async def search_cards(self, query: str, page_size: int = 10) -> list[CardData]:
        data = await self._request("/cards", params={"q": query, "pageSize": page_size})
        try:
            return CardListResponse.model_validate(data).data
        except ValidationError as e:
            raise MalformedPayloadError(f"pokemontcg.io search payload invalid: {e}") from e

    async def find_card(self, card_name: str, set_slug: str) -> CardData | None:
        """
        First card named card_name in the set mapped from set_slug.

        Returns None for unmapped sets or no match.
        """
        set_id = SET_ID_MAP.get(set_slug)
        if not set_id:
            logger.warning("pokemontcg_unknown_set_slug", set_slug=set_slug)
            return None

        cards = await self.search_cards(f'name:"{card_name}" set.id:{set_id}', page_size=1)
        return cards[0] if cards else None
