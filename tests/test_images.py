"""
Tests for the card image fetcher (src/pipeline/images.py) and the
pokemontcg.io client it resolves artwork through.
"""

from __future__ import annotations

import httpx
import pytest
import respx

from src.errors import EntityNotFoundError
from src.pipeline.images import FetchOutcome, ImageFetcher, image_extension
from src.pipeline.pokemontcg import BASE_URL, PokemonTCGClient
from src.repos import CardRepo

IMAGE_URL = "https://images.pokemontcg.io/base1/4_hires.png"
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


@pytest.fixture
def tcg_api():
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def fetcher(session_factory, tmp_path) -> ImageFetcher:
    return ImageFetcher(
        session_factory,
        client_factory=lambda: PokemonTCGClient(api_key="", max_retries=0, base_backoff=0),
        storage_dir=tmp_path,
        public_prefix="/card-images/",
        max_attempts=3,
    )


def _tcg_card(card_id: str = "base1-4", image: str = IMAGE_URL) -> dict:
    return {
        "id": card_id,
        "name": "Charizard",
        "number": "4",
        "set": {"id": "base1", "name": "Base Set"},
        "images": {"small": image.replace("_hires", ""), "large": image},
    }


async def _reload(session_factory, card_id: str):
    async with session_factory() as session:
        return await CardRepo(session).get(card_id)


@pytest.mark.parametrize(
    ("content_type", "ext"),
    [("image/jpeg", "jpg"), ("image/jpg", "jpg"), ("image/png", "png"), (None, "png")],
)
def test_image_extension(content_type, ext) -> None:
    assert image_extension(content_type) == ext


# ---------------------------------------------------------------------------
# Single card
# ---------------------------------------------------------------------------


class TestFetchCardImage:
    @pytest.mark.asyncio
    async def test_found_by_name_in_set(self, fetcher, tcg_api, make_card, session_factory, tmp_path) -> None:
        card = await make_card()
        search = tcg_api.get(f"{BASE_URL}/cards").respond(json={"data": [_tcg_card()]})
        tcg_api.get(IMAGE_URL).respond(content=PNG_BYTES, headers={"content-type": "image/png"})

        outcome = await fetcher.fetch_card_image(card.id)

        assert outcome is FetchOutcome.SUCCEEDED
        assert search.calls.last.request.url.params["q"] == 'name:"Charizard" set.id:base1'
        assert (tmp_path / "cards" / f"{card.id}.png").read_bytes() == PNG_BYTES

        stored = await _reload(session_factory, card.id)
        assert stored.local_image_url == f"/card-images/cards/{card.id}.png"
        assert stored.image_fetched_at is not None
        assert stored.poke_tcg_id == "base1-4"
        assert stored.image_fetch_attempts == 1

    @pytest.mark.asyncio
    async def test_known_id_fetched_directly(self, fetcher, tcg_api, make_card, tmp_path) -> None:
        card = await make_card(poke_tcg_id="base1-4")
        search = tcg_api.get(f"{BASE_URL}/cards")
        tcg_api.get(f"{BASE_URL}/cards/base1-4").respond(json={"data": _tcg_card()})
        tcg_api.get(IMAGE_URL).respond(content=b"jpeg", headers={"content-type": "image/jpeg"})

        outcome = await fetcher.fetch_card_image(card.id)

        assert outcome is FetchOutcome.SUCCEEDED
        assert search.call_count == 0
        assert (tmp_path / "cards" / f"{card.id}.jpg").read_bytes() == b"jpeg"

    @pytest.mark.asyncio
    async def test_falls_back_to_price_api_image(self, fetcher, tcg_api, make_card, session_factory) -> None:
        """Set has no pokemontcg.io mapping → the stored image_url is used."""
        fallback = "https://cdn.example.com/999.png"
        card = await make_card(set_name="Surging Sparks", ppt_set_id="sv8", image_url=fallback)
        tcg_api.get(fallback).respond(content=PNG_BYTES, headers={"content-type": "image/png"})

        outcome = await fetcher.fetch_card_image(card.id)

        assert outcome is FetchOutcome.SUCCEEDED
        assert (await _reload(session_factory, card.id)).poke_tcg_id is None

    @pytest.mark.asyncio
    async def test_download_failure_counts_attempt(self, fetcher, tcg_api, make_card, session_factory) -> None:
        card = await make_card()
        tcg_api.get(f"{BASE_URL}/cards").respond(json={"data": [_tcg_card()]})
        tcg_api.get(IMAGE_URL).respond(404)

        outcome = await fetcher.fetch_card_image(card.id)

        assert outcome is FetchOutcome.FAILED
        stored = await _reload(session_factory, card.id)
        assert stored.local_image_url is None
        assert stored.image_fetch_attempts == 1

    @pytest.mark.asyncio
    async def test_no_source_fails(self, fetcher, tcg_api, make_card) -> None:
        card = await make_card()
        tcg_api.get(f"{BASE_URL}/cards").respond(json={"data": []})

        assert await fetcher.fetch_card_image(card.id) is FetchOutcome.FAILED

    @pytest.mark.asyncio
    async def test_transport_error_fails(self, fetcher, tcg_api, make_card) -> None:
        card = await make_card()
        tcg_api.get(f"{BASE_URL}/cards").respond(json={"data": [_tcg_card()]})
        tcg_api.get(IMAGE_URL).mock(side_effect=httpx.ConnectError("refused"))

        assert await fetcher.fetch_card_image(card.id) is FetchOutcome.FAILED

    @pytest.mark.asyncio
    async def test_attempts_exhausted_skipped(self, fetcher, tcg_api, make_card, session_factory) -> None:
        card = await make_card(image_fetch_attempts=3)
        search = tcg_api.get(f"{BASE_URL}/cards")

        outcome = await fetcher.fetch_card_image(card.id)

        assert outcome is FetchOutcome.SKIPPED
        assert search.call_count == 0
        assert (await _reload(session_factory, card.id)).image_fetch_attempts == 3

    @pytest.mark.asyncio
    async def test_already_local_skipped(self, fetcher, make_card) -> None:
        card = await make_card(local_image_url="/card-images/cards/x.png")

        assert await fetcher.fetch_card_image(card.id) is FetchOutcome.SKIPPED

    @pytest.mark.asyncio
    async def test_unknown_card(self, fetcher) -> None:
        with pytest.raises(EntityNotFoundError):
            await fetcher.fetch_card_image("missing")


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


class TestBatches:
    @pytest.mark.asyncio
    async def test_missing_then_retry(self, fetcher, tcg_api, make_card, session_factory) -> None:
        ok = await make_card(poke_tcg_id="base1-4")
        flaky = await make_card(name="Blastoise", number="2", tcg_player_id="2", poke_tcg_id="base1-2")
        tcg_api.get(f"{BASE_URL}/cards/base1-4").respond(json={"data": _tcg_card()})
        flaky_image = "https://images.pokemontcg.io/base1/2_hires.png"
        tcg_api.get(f"{BASE_URL}/cards/base1-2").respond(json={"data": _tcg_card("base1-2", flaky_image)})
        tcg_api.get(IMAGE_URL).respond(content=PNG_BYTES, headers={"content-type": "image/png"})
        flaky_route = tcg_api.get(flaky_image)
        flaky_route.side_effect = [
            httpx.Response(503),
            httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"}),
        ]

        first = await fetcher.fetch_missing_images()

        assert (first.processed, first.succeeded, first.failed, first.skipped) == (2, 1, 1, 0)

        # Nothing is left that was never attempted
        assert (await fetcher.fetch_missing_images()).processed == 0

        retried = await fetcher.retry_failed_images()

        assert (retried.processed, retried.succeeded) == (1, 1)
        assert (await _reload(session_factory, flaky.id)).image_fetch_attempts == 2
        assert (await _reload(session_factory, ok.id)).image_fetch_attempts == 1
        assert (await fetcher.retry_failed_images()).processed == 0

    @pytest.mark.asyncio
    async def test_retry_stops_at_max_attempts(self, fetcher, tcg_api, make_card) -> None:
        await make_card(image_fetch_attempts=2)
        tcg_api.get(f"{BASE_URL}/cards").respond(json={"data": [_tcg_card()]})
        tcg_api.get(IMAGE_URL).respond(500)

        assert (await fetcher.retry_failed_images()).failed == 1
        assert (await fetcher.retry_failed_images()).processed == 0


# ---------------------------------------------------------------------------
# pokemontcg.io client
# ---------------------------------------------------------------------------


class TestPokemonTCGClient:
    @pytest.mark.asyncio
    async def test_api_key_header(self, tcg_api) -> None:
        route = tcg_api.get(f"{BASE_URL}/cards/base1-4").respond(json={"data": _tcg_card()})

        async with PokemonTCGClient(api_key="secret", max_retries=0) as client:
            card = await client.fetch_card("base1-4")

        assert card.image_url == IMAGE_URL
        assert route.calls.last.request.headers["X-Api-Key"] == "secret"

    @pytest.mark.asyncio
    async def test_unknown_id_is_none(self, tcg_api) -> None:
        tcg_api.get(f"{BASE_URL}/cards/nope-1").respond(404)

        async with PokemonTCGClient(api_key="", max_retries=0) as client:
            assert await client.fetch_card("nope-1") is None

    @pytest.mark.asyncio
    async def test_unmapped_set_makes_no_request(self, tcg_api) -> None:
        route = tcg_api.get(f"{BASE_URL}/cards")

        async with PokemonTCGClient(api_key="", max_retries=0) as client:
            assert await client.find_card("Pikachu", "surging-sparks") is None

        assert route.call_count == 0
