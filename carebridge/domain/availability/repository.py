"""Availability ledger repository - windows, time-off blocks and busy appointments"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Appointment, AvailabilityWindow, TimeOffBlock


class AvailabilityRepository:
    """Repository for availability ledger rows. Callers own the transaction."""

    @staticmethod
    def get_windows(
        db: Session, specialist_id: int, active_only: bool = True, manual_only: bool = False
    ) -> list[AvailabilityWindow]:
        query = db.query(AvailabilityWindow).filter(AvailabilityWindow.specialist_id == specialist_id)
        if active_only:
            query = query.filter(AvailabilityWindow.is_active.is_(True))
        if manual_only:
            query = query.filter(AvailabilityWindow.shift_assignment_id.is_(None))
        return query.order_by(AvailabilityWindow.id.asc()).all()

    @staticmethod
    def get_window(db: Session, specialist_id: int, window_id: int) -> Optional[AvailabilityWindow]:
        return (
            db.query(AvailabilityWindow)
            .filter(AvailabilityWindow.id == window_id, AvailabilityWindow.specialist_id == specialist_id)
            .first()
        )

    @staticmethod
    def add(db: Session, row):
        db.add(row)
        db.flush()
        return row

    @staticmethod
    def get_time_off(
        db: Session, specialist_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[TimeOffBlock]:
        query = db.query(TimeOffBlock).filter(
            TimeOffBlock.specialist_id == specialist_id, TimeOffBlock.status == "approved"
        )
        if start is not None:
            query = query.filter(TimeOffBlock.ends_at > start)
        if end is not None:
            query = query.filter(TimeOffBlock.starts_at < end)
        return query.order_by(TimeOffBlock.starts_at.asc()).all()

    @staticmethod
    def get_busy_appointments(
        db: Session, specialist_id: int, start: datetime, end: datetime
    ) -> list[Appointment]:
        rows = (
            db.query(Appointment)
            .filter(
                Appointment.specialist_id == specialist_id,
                Appointment.status != "cancelled",
                Appointment.scheduled_at < end,
            )
            .order_by(Appointment.scheduled_at.asc())
            .all()
        )
        return [a for a in rows if a.scheduled_at + timedelta(minutes=a.duration_minutes or 0) > start]

    @staticmethod
    def delete_shift_rows(db: Session, shift_assignment_id: int) -> tuple[int, int]:
        """Delete only rows tagged with this assignment. Returns (windows, blocks) deleted."""
        windows_deleted = (
            db.query(AvailabilityWindow)
            .filter(AvailabilityWindow.shift_assignment_id == shift_assignment_id)
            .delete(synchronize_session=False)
        )
        blocks_deleted = (
            db.query(TimeOffBlock)
            .filter(TimeOffBlock.shift_assignment_id == shift_assignment_id)
            .delete(synchronize_session=False)
        )
        return windows_deleted, blocks_deleted
