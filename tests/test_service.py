import asyncio

import httpx
import pytest

from anishelf_app.catalog.cache import PERSIST_PREFIX
from anishelf_app.catalog.client import JikanClient
from anishelf_app.catalog.models import FilterState, QueryMode, ResultStatus
from anishelf_app.catalog.service import CatalogService

from conftest import BASE_URL, anime_item

TOP = {"data": [
    anime_item(5114, "FMA: Brotherhood", type="TV", score=9.1, popularity=3),
    anime_item(28977, "Gintama", type="TV", score=9.0, popularity=300),
    anime_item(32281, "Your Name.", type="Movie", score=8.8, popularity=20),
]}


def titles(result):
    return [r["title"] for r in result.data]


@pytest.mark.asyncio
async def test_search_is_cached_by_identity(jikan, store, clock):
    jikan.add("/anime", {"data": [anime_item(20, "Naruto", score=8.0)]})
    service = CatalogService(jikan.client(), store, clock=clock)
    state = FilterState.create(term="naruto")

    first = await service.run_query(state)
    second = await service.run_query(FilterState.create(term="  naruto "))

    assert first.status is ResultStatus.READY
    assert not first.from_cache
    assert second.from_cache
    assert titles(second) == ["Naruto"]
    assert len(jikan.calls) == 1


@pytest.mark.asyncio
async def test_curated_list_is_refined_per_delivery(jikan, store, clock):
    jikan.add("/top/anime", TOP)
    service = CatalogService(jikan.client(), store, clock=clock)

    tv = await service.run_query(FilterState.create(type="tv"), QueryMode.TOP)
    movies = await service.run_query(FilterState.create(type="movie"), QueryMode.TOP)
    popular = await service.run_query(FilterState.create(sort_key="popularity"), QueryMode.TOP)

    assert titles(tv) == ["FMA: Brotherhood", "Gintama"]
    assert titles(movies) == ["Your Name."]
    assert titles(popular) == ["FMA: Brotherhood", "Your Name.", "Gintama"]
    assert jikan.calls == [("/top/anime", {"limit": "20"})]


@pytest.mark.asyncio
async def test_short_term_and_noop_never_reach_the_network(jikan, store):
    service = CatalogService(jikan.client(), store)

    too_short = await service.run_query(FilterState.create(term="na"))
    nothing = await service.run_query(FilterState.create(term=""))

    assert too_short.status is ResultStatus.ERROR
    assert too_short.code == "query_too_short"
    assert nothing.status is ResultStatus.READY
    assert nothing.code == "noop"
    assert nothing.data == []
    assert jikan.calls == []


@pytest.mark.asyncio
async def test_failures_are_reported_and_not_cached(jikan, store):
    jikan.add("/anime", {"status": 429}, status=429)
    service = CatalogService(jikan.client(), store)
    state = FilterState.create(term="naruto")

    result = await service.run_query(state)
    await service.run_query(state)

    assert result.status is ResultStatus.ERROR
    assert result.code == "rate_limited"
    assert len(service.list_cache) == 0
    assert len(jikan.calls) == 2


@pytest.mark.asyncio
async def test_cancelled_token_result_is_dropped(jikan, store):
    jikan.add("/anime", {"data": [anime_item(20, "Naruto")]})
    service = CatalogService(jikan.client(), store)
    token = service.counter.token()
    token.cancel()

    assert await service.run_query(FilterState.create(term="naruto"), token=token) is None


@pytest.mark.asyncio
async def test_slow_older_fetch_does_not_overwrite_newer(store):
    started = asyncio.Event()
    release = asyncio.Event()
    calls = []

    async def handler(request):
        calls.append(request)
        if len(calls) == 1:
            started.set()
            await release.wait()
            return httpx.Response(200, json={"data": [anime_item(1, "Old")]})
        return httpx.Response(200, json={"data": [anime_item(2, "New")]})

    client = JikanClient(base_url=BASE_URL, rate_limit=0, max_retries=1, transport=httpx.MockTransport(handler))
    service = CatalogService(client, store)
    state = FilterState.create(term="naruto")
    older, newer = service.counter.token(), service.counter.token()

    slow = asyncio.ensure_future(service.run_query(state, token=older))
    await asyncio.wait_for(started.wait(), timeout=1)
    fast = await service.run_query(state, token=newer)
    release.set()
    await slow

    identity = service.composer.compose(state).identity
    assert titles(fast) == ["New"]
    assert service.list_cache.get(identity).value[0]["title"] == "New"
    assert service.list_cache.stats()["discarded_writes"] == 1


@pytest.mark.asyncio
async def test_unknown_genres_fall_back_to_client_side_filtering(jikan, store):
    jikan.add("/genres/anime", {"status": 500}, status=500)
    jikan.add("/anime", {"data": [
        anime_item(20, "Naruto", genres=["Action"]),
        anime_item(21, "One Piece", genres=["Adventure"]),
    ]})
    service = CatalogService(jikan.client(), store)

    result = await service.run_query(FilterState.create(term="naruto", genres=["action"]))

    assert titles(result) == ["Naruto"]
    assert "genres" not in jikan.calls[-1][1]


@pytest.mark.asyncio
async def test_known_genres_are_sent_as_ids(jikan, store):
    jikan.add("/genres/anime", {"data": [{"mal_id": 1, "name": "Action"}, {"mal_id": 2, "name": "Adventure"}]})
    jikan.add("/anime", {"data": [anime_item(20, "Naruto", genres=["Action"])]})
    service = CatalogService(jikan.client(), store)

    await service.run_query(FilterState.create(term="naruto", genres=["Adventure", "Action"]))

    assert jikan.calls[-1][1]["genres"] == "1,2"


@pytest.mark.asyncio
async def test_detail_is_cached_for_an_hour(jikan, store, clock):
    jikan.add_detail(5114)
    service = CatalogService(jikan.client(), store, clock=clock)

    first = await service.get_detail(5114)
    clock.advance(59 * 60)
    cached = await service.get_detail("5114")
    clock.advance(2 * 60)
    refreshed = await service.get_detail(5114)

    assert first.data["primary"]["mal_id"] == 5114
    assert cached.from_cache
    assert not refreshed.from_cache
    assert len(jikan.calls) == 6


@pytest.mark.asyncio
async def test_failed_detail_is_not_cached(jikan, store, clock):
    jikan.add_detail(5114)
    jikan.add("/anime/5114/characters", {"status": 500}, status=500)
    service = CatalogService(jikan.client(), store, clock=clock)

    result = await service.get_detail(5114)

    assert result.status is ResultStatus.ERROR
    assert result.code == "aggregate_fetch_failed"
    assert result.message == "Failed to fetch anime (HTTP 500)."
    assert len(service.detail_cache) == 0
    assert store.read_list(PERSIST_PREFIX + "5114") == []


@pytest.mark.asyncio
async def test_detail_reports_favorite_state(jikan, store):
    jikan.add_detail(5114)
    service = CatalogService(jikan.client(), store)

    before = await service.get_detail(5114)
    service.toggle_favorite(before.data["primary"])
    after = await service.get_detail(5114)

    assert before.data["is_favorite"] is False
    assert after.data["is_favorite"] is True
    assert after.from_cache


@pytest.mark.asyncio
async def test_persisted_detail_survives_a_new_service(jikan, store, clock):
    jikan.add_detail(5114)
    await CatalogService(jikan.client(), store, clock=clock).get_detail(5114)

    result = await CatalogService(jikan.client(), store, clock=clock).get_detail(5114)

    assert result.from_cache
    assert len(jikan.calls) == 3


@pytest.mark.asyncio
async def test_suppressed_genre_query_makes_no_calls(jikan, store):
    jikan.add("/genres/anime", {"status": 500}, status=500)
    service = CatalogService(jikan.client(), store)

    for _ in range(3):
        result = await service.run_query(FilterState.create(term="na", genres=["Action"]))
        assert result.code == "query_too_short"

    assert jikan.calls == []


@pytest.mark.asyncio
async def test_failed_genre_taxonomy_is_not_refetched_every_query(jikan, store, clock):
    jikan.add("/genres/anime", {"status": 500}, status=500)
    jikan.add("/anime", {"data": [anime_item(20, "Naruto", genres=["Action"])]})
    service = CatalogService(jikan.client(), store, clock=clock)

    await service.run_query(FilterState.create(term="naruto", genres=["Action"]))
    await service.run_query(FilterState.create(term="bleach", genres=["Action"]))
    assert jikan.paths().count("/genres/anime") == 1

    clock.advance(service.taxonomy.retry_after)
    await service.run_query(FilterState.create(term="one piece", genres=["Action"]))
    assert jikan.paths().count("/genres/anime") == 2


@pytest.mark.asyncio
async def test_curated_list_with_genres_skips_the_taxonomy(jikan, store):
    jikan.add("/top/anime", TOP)
    service = CatalogService(jikan.client(), store)

    await service.run_query(FilterState.create(genres=["Action"]), QueryMode.TOP)

    assert jikan.paths() == ["/top/anime"]
