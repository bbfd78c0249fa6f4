"""
================================================================================
AniShelf - Catalog Service
================================================================================
Query orchestration over the catalog pipeline:

  FilterState --compose--> RequestDescriptor --cache?--> hit:  refine, ready
                                                     --> miss: fetch (seq n)
                                                               -> cache.put(seq n)
                                                               -> refine, ready

List/search results are cached raw (process lifetime) and refined on every
delivery. Detail aggregates (anime + characters + recommendations) are cached
for one hour and mirrored in the persisted store.

Failures never escape: every CatalogError becomes QueryResult.failure(...).
A result whose token was cancelled in the meantime is dropped (None).

Usage:
    service = CatalogService(client, store)
    await service.load_genres()
    result = await service.run_query(FilterState.create(term="naruto"))
    detail = await service.get_detail(20)
================================================================================
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..store import CommentsStore, FavoritesStore, PersistedStore
from .aggregator import FetchAggregator, detail_requests
from .cache import EntityCache
from .client import JikanClient
from .composer import GenreTaxonomy, QueryComposer, detail_identity
from .debounce import CancellationToken, SequenceCounter
from .errors import CatalogError
from .models import (
    EntityAggregate, FilterState, QueryMode, QueryResult, QueryTooShort, RequestKind,
    ValidationNoop,
)
from .refiner import ResultRefiner

logger = logging.getLogger(__name__)

DETAIL_CACHE_TTL = 60 * 60


class CatalogService:
    """Single entry point the presentation layer talks to."""

    def __init__(
        self,
        client: JikanClient,
        store: PersistedStore,
        detail_ttl: float = DETAIL_CACHE_TTL,
        result_limit: int = 20,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.store = store
        self.counter = SequenceCounter()
        self.taxonomy = GenreTaxonomy(clock=clock)
        self.composer = QueryComposer(self.taxonomy, limit=result_limit)
        self.aggregator = FetchAggregator(client)
        self.refiner = ResultRefiner()
        self.list_cache = EntityCache(ttl=None, clock=clock, name="lists")
        self.detail_cache = EntityCache(ttl=detail_ttl, store=store, clock=clock, name="details")
        self.favorites_store = FavoritesStore(store)
        self.comments_store = CommentsStore(store, clock=clock)

    async def close(self):
        await self.client.close()

    # =========================================================================
    # GENRES
    # =========================================================================

    async def load_genres(self, force: bool = False) -> List[Dict]:
        """
        Fetch the genre taxonomy if missing or stale.

        A failed fetch leaves the current taxonomy in place, so genre filters
        fall back to client-side name matching, and is not retried until the
        taxonomy's backoff has passed.
        """
        if force or self.taxonomy.needs_fetch():
            try:
                self.taxonomy.load(await self.client.fetch_genres())
            except CatalogError as e:
                self.taxonomy.mark_failed()
                logger.warning(f"Genre taxonomy unavailable, filtering genres client-side: {e}")
        return self.taxonomy.names()

    # =========================================================================
    # LIST / SEARCH
    # =========================================================================

    async def run_query(
        self,
        state: FilterState,
        mode: QueryMode = QueryMode.SEARCH,
        token: Optional[CancellationToken] = None,
    ) -> Optional[QueryResult]:
        """
        Resolve one FilterState to a QueryResult.

        Returns:
            QueryResult, or None if `token` was cancelled before delivery
        """
        outcome = self.composer.compose(state, mode)

        if isinstance(outcome, QueryTooShort):
            return QueryResult.too_short(outcome)
        if isinstance(outcome, ValidationNoop):
            return QueryResult.nothing(outcome)

        # Genre ids only matter for searches that will actually be issued
        if (state.genres and outcome.kind is RequestKind.SEARCH_QUERY
                and self.taxonomy.needs_fetch()):
            await self.load_genres()
            outcome = self.composer.compose(state, mode)

        descriptor = outcome
        entry = self.list_cache.get(descriptor.identity)
        if entry is not None:
            refined = self.refiner.refine(entry.value, state, descriptor.expressed)
            return QueryResult.ready(refined, from_cache=True)

        sequence = token.sequence if token is not None else self.counter.next()
        logger.info(f"Fetching {descriptor.identity} (seq={sequence})")
        try:
            raw = await self.aggregator.fetch_list(descriptor)
        except CatalogError as e:
            if _superseded(token):
                return None
            logger.warning(f"Query {descriptor.identity} failed: {e}")
            return QueryResult.failure(e)

        self.list_cache.put(descriptor.identity, raw, sequence=sequence)

        if _superseded(token):
            logger.debug(f"Dropping superseded result for {descriptor.identity} (seq={sequence})")
            return None

        return QueryResult.ready(self.refiner.refine(raw, state, descriptor.expressed))

    # =========================================================================
    # DETAIL AGGREGATE
    # =========================================================================

    async def get_detail(
        self,
        entity_id: Any,
        token: Optional[CancellationToken] = None,
    ) -> Optional[QueryResult]:
        """
        Anime detail page: anime + characters + recommendations.

        All three are required; a partial set is an error and is not cached.
        """
        identity = detail_identity(entity_id)

        entry = self.detail_cache.get(identity)
        if entry is not None:
            return QueryResult.ready(self._with_favorite(entry.value), from_cache=True)

        sequence = token.sequence if token is not None else self.counter.next()
        try:
            aggregate = await self.aggregator.fetch_aggregate(identity, detail_requests(int(identity)))
        except CatalogError as e:
            if _superseded(token):
                return None
            return QueryResult.failure(e)

        value = aggregate.to_dict()
        self.detail_cache.put(identity, value, sequence=sequence)

        if _superseded(token):
            return None
        return QueryResult.ready(self._with_favorite(value))

    def invalidate_detail(self, entity_id: Any) -> None:
        self.detail_cache.invalidate(detail_identity(entity_id))

    def _with_favorite(self, value: Dict[str, Any]) -> Dict[str, Any]:
        aggregate = EntityAggregate.from_dict(value)
        payload = aggregate.to_dict()
        mal_id = aggregate.primary.get('mal_id')
        payload['is_favorite'] = mal_id is not None and self.favorites_store.contains(mal_id)
        return payload

    # =========================================================================
    # FAVORITES / COMMENTS
    # =========================================================================

    def favorites(self) -> List[Dict[str, Any]]:
        return self.favorites_store.all()

    def is_favorite(self, mal_id: int) -> bool:
        return self.favorites_store.contains(mal_id)

    def toggle_favorite(self, anime: Dict[str, Any]) -> bool:
        return self.favorites_store.toggle(anime)

    def remove_favorite(self, mal_id: int) -> bool:
        return self.favorites_store.remove(mal_id)

    def comments(self, mal_id: int) -> List[Dict[str, Any]]:
        return self.comments_store.list(mal_id)

    def add_comment(self, mal_id: int, text: str, rating: Any) -> Dict[str, Any]:
        return self.comments_store.add(mal_id, text, rating)

    # =========================================================================
    # STATS
    # =========================================================================

    def cache_stats(self) -> Dict[str, Any]:
        return {
            'lists': self.list_cache.stats(),
            'details': self.detail_cache.stats(),
            'genres_loaded': self.taxonomy.loaded,
        }


def _superseded(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.cancelled
