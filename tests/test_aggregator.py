import asyncio

import httpx
import pytest

from anishelf_app.catalog.aggregator import FetchAggregator, detail_requests
from anishelf_app.catalog.client import JikanClient
from anishelf_app.catalog.composer import QueryComposer
from anishelf_app.catalog.errors import AggregateFetchFailed, RateLimited, TransportFailure
from anishelf_app.catalog.models import RATE_LIMITED_MESSAGE, FilterState

from conftest import BASE_URL, anime_item


@pytest.mark.asyncio
async def test_detail_aggregate_merges_all_relations(jikan):
    jikan.add_detail(5114)
    aggregator = FetchAggregator(jikan.client())

    aggregate = await aggregator.fetch_aggregate("5114", detail_requests(5114))

    assert aggregate.primary["title"] == "Fullmetal Alchemist: Brotherhood"
    assert set(aggregate.related) == {"characters", "recommendations"}
    assert aggregate.related["characters"][0]["name"] == "Elric, Edward"
    assert aggregate.related["recommendations"][0]["votes"] == 120
    assert sorted(jikan.paths()) == [
        "/anime/5114", "/anime/5114/characters", "/anime/5114/recommendations",
    ]


@pytest.mark.asyncio
async def test_one_failed_relation_fails_the_aggregate(jikan):
    jikan.add_detail(5114)
    jikan.add("/anime/5114/characters", {"status": 500}, status=500)
    aggregator = FetchAggregator(jikan.client())

    with pytest.raises(AggregateFetchFailed) as exc_info:
        await aggregator.fetch_aggregate("5114", detail_requests(5114))

    error = exc_info.value
    assert error.relation == "characters"
    assert isinstance(error.cause, TransportFailure)
    assert error.code == "aggregate_fetch_failed"


@pytest.mark.asyncio
async def test_rate_limited_relation_keeps_the_rate_limit_message(jikan):
    jikan.add_detail(5114)
    jikan.add("/anime/5114/recommendations", {"status": 429}, status=429)
    aggregator = FetchAggregator(jikan.client())

    with pytest.raises(AggregateFetchFailed) as exc_info:
        await aggregator.fetch_aggregate("5114", detail_requests(5114))

    assert isinstance(exc_info.value.cause, RateLimited)
    assert exc_info.value.user_message == RATE_LIMITED_MESSAGE


@pytest.mark.asyncio
async def test_missing_primary_fails_the_aggregate(jikan):
    jikan.add_detail(5114)
    jikan.add("/anime/5114", {"data": None})
    aggregator = FetchAggregator(jikan.client())

    with pytest.raises(AggregateFetchFailed) as exc_info:
        await aggregator.fetch_aggregate("5114", detail_requests(5114))

    assert exc_info.value.relation == "anime"


@pytest.mark.asyncio
async def test_sub_requests_run_concurrently():
    in_flight = {"now": 0, "max": 0}

    async def handler(request):
        in_flight["now"] += 1
        in_flight["max"] = max(in_flight["max"], in_flight["now"])
        await asyncio.sleep(0.02)
        in_flight["now"] -= 1
        if request.url.path.endswith("/5114"):
            return httpx.Response(200, json={"data": anime_item(5114, "FMA: Brotherhood")})
        return httpx.Response(200, json={"data": []})

    client = JikanClient(base_url=BASE_URL, rate_limit=0, max_retries=1, transport=httpx.MockTransport(handler))
    aggregate = await FetchAggregator(client).fetch_aggregate("5114", detail_requests(5114))
    await client.close()

    assert in_flight["max"] == 3
    assert aggregate.related == {"characters": [], "recommendations": []}


@pytest.mark.asyncio
async def test_fetch_list_parses_records(jikan):
    jikan.add("/anime", {"data": [anime_item(20, "Naruto", score=8.0), anime_item(1735, "Naruto: Shippuuden")]})
    descriptor = QueryComposer().compose(FilterState.create(term="naruto"))

    records = await FetchAggregator(jikan.client()).fetch_list(descriptor)

    assert [r["mal_id"] for r in records] == [20, 1735]
    assert jikan.calls[0][1]["q"] == "naruto"


@pytest.mark.asyncio
async def test_default_rate_limit_still_allows_concurrent_sub_requests():
    in_flight = {"now": 0, "max": 0}

    async def handler(request):
        in_flight["now"] += 1
        in_flight["max"] = max(in_flight["max"], in_flight["now"])
        await asyncio.sleep(0.05)
        in_flight["now"] -= 1
        if request.url.path.endswith("/5114"):
            return httpx.Response(200, json={"data": anime_item(5114, "FMA: Brotherhood")})
        return httpx.Response(200, json={"data": []})

    client = JikanClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    started = asyncio.get_running_loop().time()
    await FetchAggregator(client).fetch_aggregate("5114", detail_requests(5114))
    elapsed = asyncio.get_running_loop().time() - started
    await client.close()

    assert client.rate_limit == 60
    assert in_flight["max"] == 3
    assert elapsed < 0.5
