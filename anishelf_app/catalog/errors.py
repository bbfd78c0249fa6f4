"""
Catalog error taxonomy.

Only the transport layer (JikanClient) and the FetchAggregator raise these.
CatalogService catches them at the query boundary and turns them into
QueryResult.failure(...). QueryTooShort / ValidationNoop are not errors and
live in models.py as returned sentinels.
"""

from typing import Optional


class CatalogError(Exception):
    """Base class for failures scoped to a single in-flight query."""

    code = "error"

    @property
    def user_message(self) -> str:
        return "An unexpected error occurred."


class RateLimited(CatalogError):
    """Remote API answered 429. Not retried automatically."""

    code = "rate_limited"

    def __init__(self, url: str = "", retry_after: Optional[float] = None):
        self.url = url
        self.retry_after = retry_after
        super().__init__(f"Rate limited by remote API ({url})")

    @property
    def user_message(self) -> str:
        from .models import RATE_LIMITED_MESSAGE
        return RATE_LIMITED_MESSAGE


class TransportFailure(CatalogError):
    """Network error or non-2xx response. `status` is None for network errors."""

    code = "transport_failure"

    def __init__(self, status: Optional[int] = None, url: str = "", detail: str = ""):
        self.status = status
        self.url = url
        self.detail = detail
        label = f"HTTP {status}" if status is not None else "network error"
        super().__init__(f"{label} for {url}" + (f": {detail}" if detail else ""))

    @property
    def user_message(self) -> str:
        if self.status is None:
            return "Failed to fetch anime (network error)."
        return f"Failed to fetch anime (HTTP {self.status})."


class AggregateFetchFailed(CatalogError):
    """One or more required sub-resources of an aggregate failed."""

    code = "aggregate_fetch_failed"

    def __init__(self, cause: Exception, relation: str = ""):
        self.cause = cause
        self.relation = relation
        super().__init__(f"Aggregate fetch failed at '{relation}': {cause}")

    @property
    def user_message(self) -> str:
        if isinstance(self.cause, CatalogError):
            return self.cause.user_message
        return f"Failed to load {self.relation or 'details'}."
