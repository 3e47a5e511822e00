"""
Tests for the PokemonPriceTracker API client (src/pipeline/ppt.py).

Covers:
- Client initialization and credential checks
- get_card: success, list-shaped data, empty body, typed HTTP errors
- Retry logic: 429 and 5xx retried, terminal 4xx not retried
- get_cards_by_set pagination
- get_sets payload shapes
- Credit tracking from X-Credits-Used, shared daily ledger
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.config import settings
from src.errors import (
    ConfigurationError,
    MalformedPayloadError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)
from src.pipeline.ppt import CreditLedger, PPTClient


# ---------------------------------------------------------------------------
# Test 1: Initialization
# ---------------------------------------------------------------------------


def test_client_init_defaults() -> None:
    """Client uses settings defaults when no overrides are given."""
    client = PPTClient(api_key="k")

    assert client._base_url == settings.PPT_BASE_URL
    assert client._max_retries == settings.PPT_MAX_RETRIES
    assert client._client is None
    assert client.credits_remaining == settings.PPT_DAILY_CREDIT_LIMIT


def test_missing_key_raises_configuration_error() -> None:
    client = PPTClient(api_key="")

    assert client.has_api_key is False
    with pytest.raises(ConfigurationError):
        client.require_credentials()


# ---------------------------------------------------------------------------
# Test 2: get_card
# ---------------------------------------------------------------------------


class TestGetCard:
    @pytest.mark.asyncio
    async def test_success(self, ppt_api, card_payload) -> None:
        route = ppt_api.get("/cards").respond(
            json={"data": card_payload(sales_by_grade={"PSA 10": {"averagePrice": 2000}})},
            headers={"X-Credits-Used": "2"},
        )

        async with PPTClient(api_key="k", max_retries=0) as client:
            card = await client.get_card("243172")

        assert card.tcgPlayerId == "243172"
        assert card.prices.market == 350.0
        assert card.sales_by_grade == {"PSA 10": {"averagePrice": 2000}}
        assert card.image_url == "https://cdn.example.com/243172.png"

        request = route.calls.last.request
        assert request.url.params["tcgPlayerId"] == "243172"
        assert request.url.params["includeEbay"] == "true"
        assert request.headers["Authorization"] == "Bearer k"

    @pytest.mark.asyncio
    async def test_list_shaped_data(self, ppt_api, card_payload) -> None:
        ppt_api.get("/cards").respond(json={"data": [card_payload(tcg_player_id="9")]})

        async with PPTClient(api_key="k", max_retries=0) as client:
            card = await client.get_card("9")

        assert card.tcgPlayerId == "9"

    @pytest.mark.asyncio
    async def test_empty_body_is_not_found(self, ppt_api) -> None:
        ppt_api.get("/cards").respond(json={"data": []})

        async with PPTClient(api_key="k", max_retries=0) as client:
            with pytest.raises(NotFoundError):
                await client.get_card("404404")

    @pytest.mark.asyncio
    async def test_unauthorized(self, ppt_api) -> None:
        route = ppt_api.get("/cards").respond(401, json={"message": "Invalid API key", "code": "UNAUTHORIZED"})

        async with PPTClient(api_key="bad", max_retries=3) as client:
            with pytest.raises(UnauthorizedError) as exc_info:
                await client.get_card("1")

        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "UNAUTHORIZED"
        assert exc_info.value.retryable is False
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_http_404(self, ppt_api) -> None:
        ppt_api.get("/cards").respond(404)

        async with PPTClient(api_key="k", max_retries=0) as client:
            with pytest.raises(NotFoundError):
                await client.get_card("1")

    @pytest.mark.asyncio
    async def test_invalid_json(self, ppt_api) -> None:
        ppt_api.get("/cards").respond(200, content=b"<html>oops</html>")

        async with PPTClient(api_key="k", max_retries=0) as client:
            with pytest.raises(MalformedPayloadError):
                await client.get_card("1")

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, ppt_api) -> None:
        ppt_api.get("/cards").respond(json={"data": {"name": "no ids"}})

        async with PPTClient(api_key="k", max_retries=0) as client:
            with pytest.raises(MalformedPayloadError):
                await client.get_card("1")


# ---------------------------------------------------------------------------
# Test 3: Retries
# ---------------------------------------------------------------------------


class TestRetries:
    @pytest.mark.asyncio
    async def test_429_then_success(self, ppt_api, card_payload) -> None:
        route = ppt_api.get("/cards")
        route.side_effect = [
            httpx.Response(429, json={"message": "slow down"}),
            httpx.Response(200, json={"data": card_payload()}),
        ]

        with patch("src.pipeline.ppt.asyncio.sleep", new_callable=AsyncMock) as sleep:
            async with PPTClient(api_key="k", max_retries=3, base_backoff=1.0) as client:
                card = await client.get_card("243172")

        assert card.name == "Charizard"
        assert route.call_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_persistent_429_raises_rate_limited(self, ppt_api) -> None:
        route = ppt_api.get("/cards").respond(429)

        with patch("src.pipeline.ppt.asyncio.sleep", new_callable=AsyncMock) as sleep:
            async with PPTClient(api_key="k", max_retries=2, base_backoff=1.0) as client:
                with pytest.raises(RateLimitedError):
                    await client.get_card("1")

        assert route.call_count == 3
        # Exponential backoff, no sleep after the final attempt
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_5xx_raises_upstream_error(self, ppt_api) -> None:
        ppt_api.get("/cards").respond(503)

        with patch("src.pipeline.ppt.asyncio.sleep", new_callable=AsyncMock):
            async with PPTClient(api_key="k", max_retries=1) as client:
                with pytest.raises(UpstreamError) as exc_info:
                    await client.get_card("1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout_is_upstream_error(self, ppt_api) -> None:
        ppt_api.get("/cards").mock(side_effect=httpx.ReadTimeout("timed out"))

        with patch("src.pipeline.ppt.asyncio.sleep", new_callable=AsyncMock):
            async with PPTClient(api_key="k", max_retries=1) as client:
                with pytest.raises(UpstreamError) as exc_info:
                    await client.get_card("1")

        assert exc_info.value.status_code is None


# ---------------------------------------------------------------------------
# Test 4: Listings
# ---------------------------------------------------------------------------


class TestListings:
    @pytest.mark.asyncio
    async def test_get_cards_by_set_pages(self, ppt_api, card_payload) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            cards = (
                [card_payload(tcg_player_id="1", number="1"), card_payload(tcg_player_id="2", number="2")]
                if page == 1
                else [card_payload(tcg_player_id="3", number="3")]
            )
            return httpx.Response(200, json={"data": cards, "metadata": {"total": 3}})

        route = ppt_api.get("/cards").mock(side_effect=respond)

        async with PPTClient(api_key="k", max_retries=0) as client:
            cards = await client.get_cards_by_set("base1", page_size=2)

        assert [c.tcgPlayerId for c in cards] == ["1", "2", "3"]
        assert route.call_count == 2
        assert route.calls[0].request.url.params["setId"] == "base1"

    @pytest.mark.asyncio
    async def test_single_page_without_metadata(self, ppt_api, card_payload) -> None:
        route = ppt_api.get("/cards").respond(json={"data": [card_payload()]})

        async with PPTClient(api_key="k", max_retries=0) as client:
            cards = await client.get_cards_by_set("base1", page_size=100)

        assert len(cards) == 1
        assert route.call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("wrapped", [True, False])
    async def test_get_sets_shapes(self, ppt_api, wrapped: bool) -> None:
        items = [{"id": 1, "name": "Base Set", "releaseDate": "1999-01-09", "cardCount": 102}]
        ppt_api.get("/sets").respond(json={"data": items} if wrapped else items)

        async with PPTClient(api_key="k", max_retries=0) as client:
            sets = await client.get_sets()

        assert sets[0].id == "1"
        assert sets[0].name == "Base Set"

    @pytest.mark.asyncio
    async def test_get_sets_bad_payload(self, ppt_api) -> None:
        ppt_api.get("/sets").respond(json={"data": "nope"})

        async with PPTClient(api_key="k", max_retries=0) as client:
            with pytest.raises(MalformedPayloadError):
                await client.get_sets()


# ---------------------------------------------------------------------------
# Test 5: Credits
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_credit_tracking(ppt_api, card_payload) -> None:
    ppt_api.get("/cards").respond(json={"data": card_payload()}, headers={"X-Credits-Used": "2"})

    async with PPTClient(api_key="k", max_retries=0, daily_credit_limit=3) as client:
        await client.get_card("1")
        assert client.credits_used == 2
        assert client.has_credits() is True

        await client.get_card("1")
        assert client.credits_used == 4
        assert client.credits_remaining == 0
        assert client.has_credits() is False


@pytest.mark.asyncio
async def test_clients_share_one_ledger(ppt_api, card_payload) -> None:
    """Credits spent by one client count against every client on the same ledger."""
    ppt_api.get("/cards").respond(json={"data": card_payload()}, headers={"X-Credits-Used": "1"})
    ledger = CreditLedger(daily_limit=2)

    async with PPTClient(api_key="k", max_retries=0, credits=ledger) as first:
        await first.get_card("1")
        await first.get_card("1")

    second = PPTClient(api_key="k", max_retries=0, credits=ledger)

    assert ledger.used == 2
    assert second.credits_used == 2
    assert second.has_credits() is False


def test_ledger_resets_on_new_utc_day() -> None:
    ledger = CreditLedger(daily_limit=5)
    ledger.record(5)
    ledger._day = ledger._day - timedelta(days=1)

    assert ledger.used == 0
    assert ledger.remaining == 5
