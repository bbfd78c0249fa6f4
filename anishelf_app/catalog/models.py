"""
================================================================================
AniShelf - Catalog Models
================================================================================
Value objects passed between the stages of the catalog pipeline:

  FilterState -> QueryComposer -> RequestDescriptor -> EntityCache
              -> FetchAggregator -> ResultRefiner -> QueryResult

FilterState and RequestDescriptor are frozen snapshots. A new user input
produces a new FilterState that replaces the old one wholesale.
================================================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple


# =============================================================================
# ENUMS
# =============================================================================

class AnimeType(str, Enum):
    """Media type filter (Jikan `type` parameter values)."""
    ALL = "all"
    TV = "tv"
    MOVIE = "movie"
    OVA = "ova"
    SPECIAL = "special"
    ONA = "ona"
    MUSIC = "music"

    @classmethod
    def coerce(cls, value: Any) -> "AnimeType":
        """Map loose input ("Movie", " tv ", None) to a member, ALL if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.ALL


class SortKey(str, Enum):
    """Result ordering."""
    SCORE = "score"
    POPULARITY = "popularity"

    @classmethod
    def coerce(cls, value: Any) -> "SortKey":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.SCORE


class QueryMode(str, Enum):
    """Free search vs. curated list browsing."""
    SEARCH = "search"
    TOP = "top"
    SEASONAL = "seasonal"


class RequestKind(str, Enum):
    SEARCH_QUERY = "searchQuery"
    TOP_LIST = "topList"
    SEASONAL_LIST = "seasonalList"
    DETAIL_AGGREGATE = "detailAggregate"


class ResultStatus(str, Enum):
    LOADING = "loading"
    ERROR = "error"
    READY = "ready"


# =============================================================================
# FILTER STATE
# =============================================================================

@dataclass(frozen=True)
class FilterState:
    """
    Immutable snapshot of the user's search controls.

    `min_score` is kept as given; the composer decides whether it is a
    usable filter (None, NaN or out of [0, 10] are treated as unset).
    """
    term: str = ""
    type: AnimeType = AnimeType.ALL
    sort_key: SortKey = SortKey.SCORE
    genres: FrozenSet[str] = frozenset()
    min_score: Optional[float] = None

    @classmethod
    def create(
        cls,
        term: Optional[str] = "",
        type: Any = AnimeType.ALL,
        sort_key: Any = SortKey.SCORE,
        genres: Optional[Iterable[str]] = None,
        min_score: Any = None,
    ) -> "FilterState":
        """
        Build a FilterState from loose UI/query-string input.

        Args:
            term: Free-text search term
            type: AnimeType or its string value
            sort_key: SortKey or its string value
            genres: Genre names (blank names are dropped)
            min_score: Number or numeric string; anything else becomes None

        Returns:
            FilterState
        """
        names = frozenset(
            g.strip() for g in (genres or []) if isinstance(g, str) and g.strip()
        )
        return cls(
            term=term if isinstance(term, str) else "",
            type=AnimeType.coerce(type),
            sort_key=SortKey.coerce(sort_key),
            genres=names,
            min_score=_to_float(min_score),
        )

    def is_default(self) -> bool:
        """True when no filter differs from its default."""
        return (
            self.type is AnimeType.ALL
            and self.sort_key is SortKey.SCORE
            and not self.genres
            and self.min_score is None
        )


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# REQUESTS
# =============================================================================

@dataclass(frozen=True)
class RequestDescriptor:
    """
    Canonical description of one remote list/search request.

    `params` is held sorted by key so two descriptors built from the same
    semantic request compare equal. `expressed` names the filters the remote
    request already applies server side ("type", "genres", "min_score",
    "sort"); the refiner skips those.
    """
    kind: RequestKind
    path: str
    params: Tuple[Tuple[str, str], ...]
    identity: str
    expressed: FrozenSet[str] = frozenset()

    @property
    def query_params(self) -> Dict[str, str]:
        return dict(self.params)


@dataclass(frozen=True)
class RequestSpec:
    """One sub-request of an aggregate fetch."""
    relation: str
    path: str
    params: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class QueryTooShort:
    """Composer outcome: term is non-empty but shorter than the minimum."""
    term: str
    min_length: int = 3


@dataclass(frozen=True)
class ValidationNoop:
    """Composer outcome: state intentionally produces no request."""
    reason: str = "default filters"


# =============================================================================
# CACHE / AGGREGATES
# =============================================================================

@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    sequence: int = 0

    def is_fresh(self, now: float, ttl: Optional[float]) -> bool:
        """Entries without a TTL live for the process lifetime."""
        return ttl is None or (now - self.stored_at) < ttl


@dataclass
class EntityAggregate:
    """Primary entity plus its required related-resource sets."""
    primary: Dict[str, Any]
    related: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"primary": self.primary, "related": self.related}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityAggregate":
        return cls(primary=data.get("primary") or {}, related=data.get("related") or {})


# =============================================================================
# PRESENTATION RESULT
# =============================================================================

RATE_LIMITED_MESSAGE = "Too many requests. Please wait a moment before trying again."
QUERY_TOO_SHORT_MESSAGE = "Please enter at least {min_length} characters to search."
NOTHING_TO_SHOW_MESSAGE = "Nothing to show yet. Enter a search term or pick a filter."


@dataclass(frozen=True)
class QueryResult:
    """
    Discriminated result handed to the presentation layer.

    status is loading | error | ready; `code` tells the error (or neutral
    ready) variants apart.
    """
    status: ResultStatus
    data: Any = None
    message: Optional[str] = None
    code: Optional[str] = None
    from_cache: bool = False
    cause_code: Optional[str] = None

    @classmethod
    def loading(cls) -> "QueryResult":
        return cls(status=ResultStatus.LOADING)

    @classmethod
    def ready(cls, data: Any, from_cache: bool = False) -> "QueryResult":
        return cls(status=ResultStatus.READY, data=data, code="ok", from_cache=from_cache)

    @classmethod
    def nothing(cls, noop: ValidationNoop) -> "QueryResult":
        return cls(status=ResultStatus.READY, data=[], message=NOTHING_TO_SHOW_MESSAGE, code="noop")

    @classmethod
    def too_short(cls, outcome: QueryTooShort) -> "QueryResult":
        return cls(
            status=ResultStatus.ERROR,
            data=[],
            message=QUERY_TOO_SHORT_MESSAGE.format(min_length=outcome.min_length),
            code="query_too_short",
        )

    @classmethod
    def failure(cls, error: Exception) -> "QueryResult":
        from .errors import AggregateFetchFailed, CatalogError

        if isinstance(error, CatalogError):
            cause = error.cause if isinstance(error, AggregateFetchFailed) else None
            return cls(
                status=ResultStatus.ERROR,
                message=error.user_message,
                code=error.code,
                cause_code=cause.code if isinstance(cause, CatalogError) else None,
            )
        return cls(status=ResultStatus.ERROR, message="An unexpected error occurred.", code="error")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status.value}
        if self.data is not None:
            payload["data"] = self.data
        if self.message:
            payload["message"] = self.message
        if self.code:
            payload["code"] = self.code
        if self.cause_code:
            payload["cause_code"] = self.cause_code
        if self.status is ResultStatus.READY:
            payload["from_cache"] = self.from_cache
        return payload
