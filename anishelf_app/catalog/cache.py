"""
Entity cache for catalog results.

Design:
  - In-memory OrderedDict keyed by request identity (or entity id)
  - TTL checked lazily on read; an expired entry counts as a miss and is
    evicted on that read (no background sweep)
  - LRU eviction when the cache exceeds max_size
  - Sequence-number write discard: a put() carrying a lower sequence than
    the last write that landed for the same identity is dropped, so a slow
    older request never overwrites a newer result
  - Optional mirroring to the persisted store (detail aggregates only)

Usage:
    cache = EntityCache(ttl=3600)

    seq = counter.next()
    aggregate = await aggregator.fetch_aggregate(...)
    cache.put("42", aggregate.to_dict(), sequence=seq)

    entry = cache.get("42")   # CacheEntry or None
"""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from .models import CacheEntry

logger = logging.getLogger(__name__)

PERSIST_PREFIX = "entityCache:"


class EntityCache:
    """TTL cache with last-write-wins by sequence number."""

    def __init__(
        self,
        ttl: Optional[float] = None,
        max_size: int = 1000,
        store=None,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
    ):
        """
        Initialize cache.

        Args:
            ttl: Time-to-live in seconds (None = process lifetime)
            max_size: Maximum in-memory entries
            store: Optional PersistedStore to mirror entries into
            clock: Time source (seconds), injectable for tests
            name: Label used in logs and stats
        """
        self.ttl = ttl
        self.max_size = max_size
        self.name = name
        self._store = store
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._landed: Dict[str, int] = {}
        self._hits = 0
        self._misses = 0
        self._discarded = 0

    # =========================================================================
    # READ
    # =========================================================================

    def get(self, identity: str) -> Optional[CacheEntry]:
        """
        Return the fresh entry for `identity`, or None on miss/expiry.

        Expired entries are evicted here (memory and persisted mirror).
        """
        entry = self._entries.get(identity)
        if entry is None and self._store is not None:
            entry = self._load_persisted(identity)

        if entry is None:
            self._misses += 1
            logger.debug(f"[{self.name}] MISS {identity}")
            return None

        if not entry.is_fresh(self._clock(), self.ttl):
            self._evict(identity)
            self._misses += 1
            logger.debug(f"[{self.name}] EXPIRED {identity}")
            return None

        self._remember(identity, entry)
        self._hits += 1
        logger.debug(f"[{self.name}] HIT {identity}")
        return entry

    # =========================================================================
    # WRITE
    # =========================================================================

    def put(self, identity: str, value: Any, sequence: int = 0) -> bool:
        """
        Store a successful result.

        Args:
            identity: Cache key
            value: Complete result (never a failure or partial aggregate)
            sequence: Monotonic sequence number of the producing request

        Returns:
            True if stored, False if discarded as stale
        """
        landed = self._landed.get(identity)
        if landed is not None and sequence < landed:
            self._discarded += 1
            logger.debug(
                f"[{self.name}] Discarded stale write for {identity} "
                f"(seq {sequence} < {landed})"
            )
            return False

        entry = CacheEntry(value=value, stored_at=self._clock(), sequence=sequence)
        self._landed[identity] = sequence
        self._remember(identity, entry)

        if self._store is not None:
            self._store.write_list(PERSIST_PREFIX + identity, [{
                "value": value,
                "storedAt": entry.stored_at,
            }])
        return True

    def invalidate(self, identity: str) -> None:
        """Drop an entry. The landed sequence mark is kept."""
        self._evict(identity)

    def clear(self) -> None:
        """Clear in-memory entries and reset statistics."""
        self._entries.clear()
        self._landed.clear()
        self._hits = 0
        self._misses = 0
        self._discarded = 0

    # =========================================================================
    # STATS
    # =========================================================================

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: str) -> bool:
        return identity in self._entries

    def stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with size, max_size, ttl, hits, misses, hit_rate and the
            number of discarded stale writes
        """
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0
        return {
            'name': self.name,
            'size': len(self._entries),
            'max_size': self.max_size,
            'ttl': self.ttl,
            'hits': self._hits,
            'misses': self._misses,
            'discarded_writes': self._discarded,
            'hit_rate': round(hit_rate, 2),
        }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _remember(self, identity: str, entry: CacheEntry) -> None:
        """Insert or refresh in memory, evicting least recently used entries over max_size."""
        self._entries[identity] = entry
        self._entries.move_to_end(identity)
        while len(self._entries) > self.max_size:
            oldest, _ = self._entries.popitem(last=False)
            # LRU-evicted identities drop their write mark
            self._landed.pop(oldest, None)
            logger.debug(f"[{self.name}] LRU evicted {oldest}")

    def _evict(self, identity: str) -> None:
        self._entries.pop(identity, None)
        if self._store is not None:
            self._store.delete(PERSIST_PREFIX + identity)

    def _load_persisted(self, identity: str) -> Optional[CacheEntry]:
        records = self._store.read_list(PERSIST_PREFIX + identity)
        if not records:
            return None
        record = records[0]
        # Sequence numbers are process-scoped, so a restored entry carries 0.
        try:
            return CacheEntry(value=record["value"], stored_at=float(record["storedAt"]))
        except (KeyError, TypeError, ValueError):
            logger.warning(f"[{self.name}] Ignoring malformed persisted entry for {identity}")
            return None
