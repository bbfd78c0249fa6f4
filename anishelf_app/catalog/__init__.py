"""
================================================================================
AniShelf - Catalog Package
================================================================================
Query orchestration and result-cache layer over the Jikan API.

Components:
  - debounce.py   - Debouncer and cancellation tokens
  - composer.py   - FilterState -> RequestDescriptor (+ genre taxonomy)
  - cache.py      - TTL entity cache with sequence-number write discard
  - client.py     - Async Jikan client (httpx) and record parsing
  - aggregator.py - Concurrent multi-endpoint fetch-and-merge
  - refiner.py    - Client-side filter/sort fallback
  - service.py    - CatalogService wiring the pipeline together
  - session.py    - Debounced interactive search session
================================================================================
"""

from .models import (
    AnimeType, SortKey, QueryMode, RequestKind, ResultStatus, FilterState,
    RequestDescriptor, RequestSpec, QueryTooShort, ValidationNoop, CacheEntry,
    EntityAggregate, QueryResult,
)
from .errors import CatalogError, RateLimited, TransportFailure, AggregateFetchFailed
from .debounce import CancellationToken, Debouncer, SequenceCounter
from .composer import GenreTaxonomy, QueryComposer
from .cache import EntityCache
from .client import JikanClient
from .aggregator import FetchAggregator
from .refiner import ResultRefiner, refine
from .service import CatalogService
from .session import SearchSession

__all__ = [
    'AnimeType', 'SortKey', 'QueryMode', 'RequestKind', 'ResultStatus',
    'FilterState', 'RequestDescriptor', 'RequestSpec', 'QueryTooShort',
    'ValidationNoop', 'CacheEntry', 'EntityAggregate', 'QueryResult',
    'CatalogError', 'RateLimited', 'TransportFailure', 'AggregateFetchFailed',
    'CancellationToken', 'Debouncer', 'SequenceCounter',
    'GenreTaxonomy', 'QueryComposer', 'EntityCache', 'JikanClient',
    'FetchAggregator', 'ResultRefiner', 'refine', 'CatalogService',
    'SearchSession',
]
