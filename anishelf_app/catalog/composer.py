"""
================================================================================
AniShelf - Query Composer
================================================================================
Turns a FilterState (+ mode) into a canonical RequestDescriptor, or into a
sentinel when no request should be issued.

Rules, in order:
  1. Trimmed term of length 1..2  -> QueryTooShort (request suppressed)
  2. Free search, empty term, default filters -> ValidationNoop
  3. Build params: genres -> ids via the genre taxonomy (unknown names are
     dropped), type only when not "all", sort always, min_score only when
     usable, fixed result limit
  4. identity = kind + sorted "key=value" join of params

The composer never raises.
================================================================================
"""

import logging
import math
import time
from dataclasses import replace
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from .models import (
    AnimeType, FilterState, QueryMode, QueryTooShort, RequestDescriptor,
    RequestKind, SortKey, ValidationNoop,
)

logger = logging.getLogger(__name__)

MIN_TERM_LENGTH = 3
MAX_RESULT_LIMIT = 20
FAILED_LOAD_BACKOFF = 5 * 60

# Popularity is a rank (1 = most popular), so it sorts ascending.
SORT_DIRECTION = {
    SortKey.SCORE: "desc",
    SortKey.POPULARITY: "asc",
}

ENDPOINTS = {
    RequestKind.SEARCH_QUERY: "/anime",
    RequestKind.TOP_LIST: "/top/anime",
    RequestKind.SEASONAL_LIST: "/seasons/now",
}

ComposeOutcome = Union[RequestDescriptor, QueryTooShort, ValidationNoop]


class GenreTaxonomy:
    """
    Genre name -> MAL genre id map fetched from /genres/anime.

    Lookups are case-insensitive. The map is considered stale after `ttl`
    seconds (genres change rarely, default 7 days).
    A failed fetch is not retried for `retry_after` seconds.
    """

    def __init__(
        self,
        ttl: float = 7 * 24 * 3600,
        retry_after: float = FAILED_LOAD_BACKOFF,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.retry_after = retry_after
        self._failed_at: Optional[float] = None
        self._clock = clock
        self._ids: Dict[str, int] = {}
        self._names: Dict[int, str] = {}
        self._loaded_at: Optional[float] = None

    def load(self, genres: Iterable[Dict]) -> None:
        """Replace the taxonomy with parsed genre records ({'mal_id', 'name'})."""
        ids: Dict[str, int] = {}
        names: Dict[int, str] = {}
        for genre in genres:
            name = genre.get("name")
            mal_id = genre.get("mal_id")
            if not name or mal_id is None:
                continue
            try:
                mal_id = int(mal_id)
            except (TypeError, ValueError):
                continue
            ids[name.strip().lower()] = mal_id
            names[mal_id] = name
        self._ids = ids
        self._names = names
        self._loaded_at = self._clock()
        self._failed_at = None
        logger.info(f"Genre taxonomy loaded ({len(ids)} genres)")

    @property
    def loaded(self) -> bool:
        return self._loaded_at is not None

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self.ttl

    def mark_failed(self) -> None:
        """Record a failed fetch; no new fetch is due for `retry_after` seconds."""
        self._failed_at = self._clock()

    def needs_fetch(self) -> bool:
        if not self.is_stale():
            return False
        return self._failed_at is None or self._clock() - self._failed_at >= self.retry_after

    def names(self) -> List[Dict]:
        return [{"mal_id": k, "name": v} for k, v in sorted(self._names.items(), key=lambda kv: kv[1])]

    def resolve(self, names: Iterable[str]) -> Tuple[List[int], FrozenSet[str]]:
        """
        Resolve genre names to ids.

        Returns:
            (sorted unique ids, names that had no known id)
        """
        ids = set()
        unresolved = set()
        for name in names:
            mal_id = self._ids.get(str(name).strip().lower())
            if mal_id is None:
                unresolved.add(name)
            else:
                ids.add(mal_id)
        return sorted(ids), frozenset(unresolved)


def coerce_min_score(value) -> Optional[float]:
    """Usable minimum score or None (NaN, non-numeric and out-of-range are unset)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score) or score < 0 or score > 10:
        return None
    return score


def format_score(score: float) -> str:
    """7.0 -> '7', 7.5 -> '7.5' (stable string for params and identity)."""
    return f"{score:g}"


def make_identity(kind: RequestKind, params: Iterable[Tuple[str, str]]) -> str:
    joined = "&".join(f"{k}={v}" for k, v in sorted(params))
    return f"{kind.value}:{joined}"


class QueryComposer:
    """Deterministic FilterState -> RequestDescriptor builder."""

    def __init__(
        self,
        taxonomy: Optional[GenreTaxonomy] = None,
        limit: int = MAX_RESULT_LIMIT,
        min_term_length: int = MIN_TERM_LENGTH,
    ):
        self.taxonomy = taxonomy or GenreTaxonomy()
        self.limit = max(1, min(int(limit), MAX_RESULT_LIMIT))
        self.min_term_length = min_term_length

    def compose(self, state: FilterState, mode: QueryMode = QueryMode.SEARCH) -> ComposeOutcome:
        """
        Build the request for `state`.

        Args:
            state: Current filter snapshot
            mode: SEARCH for free search, TOP/SEASONAL for curated lists
                  (a valid term in a curated mode switches to a search)

        Returns:
            RequestDescriptor, QueryTooShort or ValidationNoop
        """
        term = (state.term or "").strip()

        if 0 < len(term) < self.min_term_length:
            return QueryTooShort(term=term, min_length=self.min_term_length)

        min_score = coerce_min_score(state.min_score)

        if mode is QueryMode.SEARCH or term:
            if not term and replace(state, min_score=min_score).is_default():
                return ValidationNoop(reason="default filters")
            return self._search(term, state, min_score)

        kind = RequestKind.TOP_LIST if mode is QueryMode.TOP else RequestKind.SEASONAL_LIST
        return self._curated(kind)

    # =========================================================================
    # BUILDERS
    # =========================================================================

    def _search(self, term: str, state: FilterState, min_score: Optional[float]) -> RequestDescriptor:
        params: Dict[str, str] = {
            "limit": str(self.limit),
            "order_by": state.sort_key.value,
            "sort": SORT_DIRECTION[state.sort_key],
        }
        expressed = {"sort"}

        if term:
            params["q"] = term

        if state.type is not AnimeType.ALL:
            params["type"] = state.type.value
            expressed.add("type")

        if state.genres:
            ids, unresolved = self.taxonomy.resolve(state.genres)
            if ids:
                params["genres"] = ",".join(str(i) for i in ids)
            if not unresolved:
                expressed.add("genres")
            else:
                logger.debug(f"Genres without id, filtering client-side: {sorted(unresolved)}")

        if min_score is not None:
            params["min_score"] = format_score(min_score)
            expressed.add("min_score")

        return self._descriptor(RequestKind.SEARCH_QUERY, params, expressed)

    def _curated(self, kind: RequestKind) -> RequestDescriptor:
        return self._descriptor(kind, {"limit": str(self.limit)}, set())

    def _descriptor(self, kind: RequestKind, params: Dict[str, str], expressed) -> RequestDescriptor:
        ordered = tuple(sorted(params.items()))
        descriptor = RequestDescriptor(
            kind=kind,
            path=ENDPOINTS[kind],
            params=ordered,
            identity=make_identity(kind, ordered),
            expressed=frozenset(expressed),
        )
        logger.debug(f"Composed {descriptor.identity}")
        return descriptor


def detail_identity(entity_id) -> str:
    """Cache identity for a detail aggregate (the entity id itself)."""
    return str(int(entity_id))
