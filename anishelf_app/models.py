"""
================================================================================
AniShelf - Database Models
================================================================================
SQLAlchemy model backing the persisted key-value store.

One row per store key; the value is a JSON list of records:
  - favorites               -> [FavoriteEntry, ...]
  - comments:<entityId>     -> [CommentEntry, ...] (newest first)
  - entityCache:<entityId>  -> [{"value": aggregate, "storedAt": ts}]
================================================================================
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, JSON, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class StoreRecord(Base):
    """A persisted list of records under one key."""
    __tablename__ = 'store_records'

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=False, default=list)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<StoreRecord(key='{self.key}', records={len(self.value or [])})>"
