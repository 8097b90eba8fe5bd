"""Search cache repository - persisted relaxation results keyed by filter hash"""

import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...models import SearchCacheEntry

logger = logging.getLogger(__name__)


def generate_search_key(filters: dict) -> str:
    """md5 of the canonical JSON form of the filters"""
    canonical = json.dumps(filters, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()  # noqa: S324 - cache key, not security


class SearchCacheRepository:
    """Repository for the specialist search cache"""

    @staticmethod
    def get(db: Session, search_key: str) -> Optional[SearchCacheEntry]:
        return db.query(SearchCacheEntry).filter(SearchCacheEntry.search_key == search_key).first()

    @staticmethod
    def get_valid(db: Session, search_key: str, now: datetime) -> Optional[SearchCacheEntry]:
        """Unexpired entry for the key; expired entries are never served"""
        return (
            db.query(SearchCacheEntry)
            .filter(SearchCacheEntry.search_key == search_key, SearchCacheEntry.expires_at > now)
            .first()
        )

    @staticmethod
    def record_hit(db: Session, entry_id: int) -> None:
        # Increment in SQL so concurrent hits are never lost
        db.query(SearchCacheEntry).filter(SearchCacheEntry.id == entry_id).update(
            {SearchCacheEntry.hit_count: SearchCacheEntry.hit_count + 1},
            synchronize_session=False,
        )
        db.commit()

    @staticmethod
    def store(
        db: Session,
        search_key: str,
        filters: dict,
        level: str,
        relaxations: list[dict],
        specialist_ids: list[int],
        now: datetime,
        ttl_hours: float,
    ) -> SearchCacheEntry:
        """Insert or overwrite the entry for a key"""
        entry = SearchCacheRepository.get(db, search_key)
        if entry is None:
            entry = SearchCacheEntry(search_key=search_key, hit_count=0)
            db.add(entry)
        entry.search_filters = filters
        entry.constraint_level = level
        entry.relaxations_applied = relaxations
        entry.specialist_ids = specialist_ids
        entry.result_count = len(specialist_ids)
        entry.cached_at = now
        entry.expires_at = now + timedelta(hours=ttl_hours)
        db.commit()
        db.refresh(entry)
        return entry

    @staticmethod
    def purge_expired(db: Session, now: datetime) -> int:
        deleted = (
            db.query(SearchCacheEntry)
            .filter(SearchCacheEntry.expires_at <= now)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted
