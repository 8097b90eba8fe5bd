"""Waitlist repository - queued unmet requests"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import WaitlistEntry


class WaitlistRepository:
    """Repository for waitlist entries. Callers own the transaction."""

    @staticmethod
    def get(db: Session, entry_id: int) -> Optional[WaitlistEntry]:
        return db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id).first()

    @staticmethod
    def get_open_entries(db: Session, statuses=("active",), now: Optional[datetime] = None) -> list[WaitlistEntry]:
        """Unexpired entries in the given statuses, oldest first"""
        query = db.query(WaitlistEntry).filter(WaitlistEntry.status.in_(statuses))
        if now is not None:
            query = query.filter(WaitlistEntry.expires_at > now)
        return query.order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc()).all()

    @staticmethod
    def expire_overdue(db: Session, now: datetime) -> int:
        return (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.status.in_(("active", "matched")), WaitlistEntry.expires_at <= now)
            .update({WaitlistEntry.status: "expired"}, synchronize_session=False)
        )

    @staticmethod
    def mark_matched(db: Session, entry_id: int, now: datetime) -> bool:
        """active -> matched; False when another run already moved the entry"""
        updated = (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.id == entry_id, WaitlistEntry.status == "active")
            .update(
                {
                    WaitlistEntry.status: "matched",
                    WaitlistEntry.matched_at: now,
                    WaitlistEntry.notified_at: now,
                },
                synchronize_session=False,
            )
        )
        return updated == 1
