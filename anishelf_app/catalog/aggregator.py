"""
================================================================================
AniShelf - Fetch Aggregator
================================================================================
Executes the network calls behind one query.

  - List/search requests: a single GET, records parsed and passed through
    unchanged to the refiner.
  - Detail aggregates: all sub-requests (anime, characters, recommendations)
    are issued concurrently. Every one must succeed; the first failure fails
    the whole aggregate with AggregateFetchFailed. Sub-requests still in
    flight are left to finish and their results are discarded.
================================================================================
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Sequence

from .client import JikanClient, parse_anime, parse_character, parse_recommendation
from .errors import AggregateFetchFailed, CatalogError
from .models import EntityAggregate, RequestDescriptor, RequestSpec

logger = logging.getLogger(__name__)

PRIMARY_RELATION = "anime"

DEFAULT_PARSERS: Dict[str, Callable[[Dict], Dict]] = {
    "anime": parse_anime,
    "characters": parse_character,
    "recommendations": parse_recommendation,
}


def detail_requests(mal_id: int) -> List[RequestSpec]:
    """Sub-requests that make up an anime detail page."""
    mal_id = int(mal_id)
    return [
        RequestSpec(relation="anime", path=f"/anime/{mal_id}"),
        RequestSpec(relation="characters", path=f"/anime/{mal_id}/characters"),
        RequestSpec(relation="recommendations", path=f"/anime/{mal_id}/recommendations"),
    ]


def _consume(task: asyncio.Task) -> None:
    # Late results of an already failed aggregate are dropped.
    if not task.cancelled():
        task.exception()


class FetchAggregator:
    """Concurrent fetch-and-merge over a JikanClient."""

    def __init__(self, client: JikanClient, parsers: Dict[str, Callable[[Dict], Dict]] = None):
        self.client = client
        self.parsers = dict(DEFAULT_PARSERS if parsers is None else parsers)

    async def fetch_list(self, descriptor: RequestDescriptor) -> List[Dict]:
        """
        Issue a single list/search request.

        Raises:
            RateLimited, TransportFailure
        """
        started = time.monotonic()
        response = await self.client.get(descriptor.path, params=descriptor.query_params)
        records = [parse_anime(item) for item in response.get('data') or [] if isinstance(item, dict)]
        logger.info(
            f"Fetched {len(records)} results for {descriptor.identity} "
            f"in {time.monotonic() - started:.2f}s"
        )
        return records

    async def fetch_aggregate(
        self,
        identity: str,
        sub_requests: Sequence[RequestSpec],
        primary: str = PRIMARY_RELATION,
    ) -> EntityAggregate:
        """
        Fetch all sub-requests concurrently and merge them.

        Args:
            identity: Aggregate identity (for logging)
            sub_requests: Required sub-requests; `primary` names the one whose
                          `data` object becomes EntityAggregate.primary
            primary: Relation name of the primary entity

        Returns:
            EntityAggregate

        Raises:
            AggregateFetchFailed: if any sub-request fails
        """
        started = time.monotonic()
        tasks = {
            asyncio.ensure_future(self._fetch_one(spec)): spec.relation
            for spec in sub_requests
        }
        pending = set(tasks)
        results: Dict[str, object] = {}

        while pending:
            try:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
            except asyncio.CancelledError:
                for leftover in pending:
                    leftover.add_done_callback(_consume)
                raise
            failed = [task for task in done if task.exception() is not None]
            if failed:
                for leftover in pending:
                    leftover.add_done_callback(_consume)
                relation = tasks[failed[0]]
                error = failed[0].exception()
                logger.warning(f"Aggregate {identity} failed at '{relation}': {error}")
                raise AggregateFetchFailed(cause=error, relation=relation) from error
            for task in done:
                results[tasks[task]] = task.result()

        primary_data = results.get(primary)
        if not isinstance(primary_data, dict) or not primary_data:
            raise AggregateFetchFailed(
                cause=CatalogError(f"missing primary '{primary}'"), relation=primary
            )

        related = {
            relation: value for relation, value in results.items() if relation != primary
        }
        logger.info(f"Aggregate {identity} fetched in {time.monotonic() - started:.2f}s")
        return EntityAggregate(primary=primary_data, related=related)

    async def _fetch_one(self, spec: RequestSpec):
        response = await self.client.get(spec.path, params=dict(spec.params) or None)
        data = response.get('data')
        parse = self.parsers.get(spec.relation)

        if isinstance(data, list):
            items = [item for item in data if isinstance(item, dict)]
            return [parse(item) for item in items] if parse else items
        if isinstance(data, dict):
            return parse(data) if parse else data
        return []
