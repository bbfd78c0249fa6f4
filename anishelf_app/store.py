"""
================================================================================
AniShelf - Persisted Key-Value Store
================================================================================
Narrow persisted store used by the catalog core and the library routes:

    store = PersistedStore("sqlite:///anishelf.db")
    store.open()                       # process start
    store.write_list("favorites", [...])   # committed immediately
    store.read_list("favorites")
    store.close()                      # process exit

Keys:
  favorites              -> FavoritesStore (one entry per mal_id)
  comments:<entityId>    -> CommentsStore (append-only, newest first)
  entityCache:<entityId> -> EntityCache mirror for detail aggregates
================================================================================
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from .database import create_db_engine
from .models import Base, StoreRecord

logger = logging.getLogger(__name__)

FAVORITES_KEY = "favorites"
COMMENTS_PREFIX = "comments:"
MAX_COMMENT_LENGTH = 2000


class StoreClosed(RuntimeError):
    """Store used before open() or after close()."""


class InvalidComment(ValueError):
    """Comment text blank/too long or rating outside 1..10."""


class PersistedStore:
    """SQLAlchemy-backed `key -> list[record]` store."""

    def __init__(self, url: Optional[str] = None):
        self.url = url
        self._engine = None
        self._session_factory = None
        self._lock = threading.RLock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def open(self) -> "PersistedStore":
        """Create the engine and tables. Idempotent."""
        if self._engine is None:
            self._engine = create_db_engine(self.url)
            Base.metadata.create_all(self._engine)
            self._session_factory = sessionmaker(
                bind=self._engine,
                autoflush=False,
                expire_on_commit=False
            )
            logger.info("Persisted store opened")
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Persisted store closed")

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        if self._session_factory is None:
            raise StoreClosed("Persisted store is not open")
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Store session error: {e}")
            raise
        finally:
            session.close()

    # =========================================================================
    # KEY-VALUE CONTRACT
    # =========================================================================

    def read_list(self, key: str) -> List[Dict[str, Any]]:
        with self._session() as session:
            record = session.get(StoreRecord, key)
            if record is None or not isinstance(record.value, list):
                return []
            return list(record.value)

    def write_list(self, key: str, records: List[Dict[str, Any]]) -> None:
        with self._lock, self._session() as session:
            record = session.get(StoreRecord, key)
            if record is None:
                session.add(StoreRecord(key=key, value=list(records)))
            else:
                record.value = list(records)
                record.updated_at = datetime.now(timezone.utc)

    def delete(self, key: str) -> None:
        with self._lock, self._session() as session:
            record = session.get(StoreRecord, key)
            if record is not None:
                session.delete(record)

    def update(self, key: str, fn: Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """Read, transform and write one key as a single step."""
        with self._lock:
            records = fn(self.read_list(key))
            self.write_list(key, records)
            return records


# =============================================================================
# FAVORITES
# =============================================================================

class FavoritesStore:
    """At most one favorite entry per mal_id."""

    def __init__(self, store: PersistedStore):
        self.store = store

    def all(self) -> List[Dict[str, Any]]:
        return self.store.read_list(FAVORITES_KEY)

    def contains(self, mal_id: int) -> bool:
        return any(entry.get('mal_id') == int(mal_id) for entry in self.all())

    def upsert(self, anime: Dict[str, Any]) -> Dict[str, Any]:
        """Add or replace the favorite for anime['mal_id']."""
        entry = _favorite_entry(anime)

        def _apply(entries):
            kept = [e for e in entries if e.get('mal_id') != entry['mal_id']]
            kept.append(entry)
            return kept

        self.store.update(FAVORITES_KEY, _apply)
        logger.info(f"Added to favorites: {entry['title']}")
        return entry

    def remove(self, mal_id: int) -> bool:
        """Remove a favorite. Returns True if something was removed."""
        mal_id = int(mal_id)
        removed = []

        def _apply(entries):
            kept = [e for e in entries if e.get('mal_id') != mal_id]
            removed.extend(e for e in entries if e.get('mal_id') == mal_id)
            return kept

        self.store.update(FAVORITES_KEY, _apply)
        return bool(removed)

    def toggle(self, anime: Dict[str, Any]) -> bool:
        """
        Flip favorite state for anime['mal_id'].

        Returns:
            True if the anime is a favorite afterwards
        """
        entry = _favorite_entry(anime)
        state = {}

        def _apply(entries):
            if any(e.get('mal_id') == entry['mal_id'] for e in entries):
                state['favorite'] = False
                return [e for e in entries if e.get('mal_id') != entry['mal_id']]
            state['favorite'] = True
            return entries + [entry]

        self.store.update(FAVORITES_KEY, _apply)
        return state['favorite']


def _favorite_entry(anime: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'mal_id': int(anime['mal_id']),
        'title': anime.get('title') or '',
        'cover_url': anime.get('cover_url'),
        'score': anime.get('score'),
        'added_at': datetime.now(timezone.utc).isoformat(),
    }


# =============================================================================
# COMMENTS
# =============================================================================

class CommentsStore:
    """Append-only comments per entity, newest first."""

    def __init__(self, store: PersistedStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock

    @staticmethod
    def key(mal_id: int) -> str:
        return f"{COMMENTS_PREFIX}{int(mal_id)}"

    def list(self, mal_id: int) -> List[Dict[str, Any]]:
        return self.store.read_list(self.key(mal_id))

    def add(self, mal_id: int, text: str, rating: Any) -> Dict[str, Any]:
        """
        Prepend a comment.

        Args:
            mal_id: Entity id
            text: Comment body (non-blank, max 2000 chars)
            rating: Integer 1..10

        Raises:
            InvalidComment
        """
        text = text.strip() if isinstance(text, str) else ''
        if not text:
            raise InvalidComment("Please provide a comment.")
        if len(text) > MAX_COMMENT_LENGTH:
            raise InvalidComment(f"Comment exceeds max length {MAX_COMMENT_LENGTH}")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 10:
            raise InvalidComment("Rating must be an integer between 1 and 10.")

        now = self._clock()
        entry = {
            'id': int(now * 1000),
            'text': text,
            'rating': rating,
            'created_at': datetime.fromtimestamp(now, timezone.utc).isoformat(),
        }
        self.store.update(self.key(mal_id), lambda entries: [entry] + entries)
        return entry
