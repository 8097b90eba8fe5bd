"""Availability service - ledger rules, open slot computation and shift blocks"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from ...config import AVAILABILITY_HORIZON_DAYS, SLOT_MINUTES
from ...errors import AvailabilityConflictError, NotFoundError
from ...models import AvailabilityWindow, Specialist, TimeOffBlock
from ...shared.timeutils import day_of_week, daterange, intervals_overlap, parse_time
from .repository import AvailabilityRepository
from .schemas import TimeOffCreate, WindowCreate

logger = logging.getLogger(__name__)


def window_applies_on(window: AvailabilityWindow, day: date) -> bool:
    """Whether a window is in effect on a calendar date"""
    if window.start_date and day < window.start_date:
        return False
    if window.end_date and day > window.end_date:
        return False
    if window.day_of_week is not None:
        return window.day_of_week == day_of_week(day)
    # Explicit-date window: bounded by start_date/end_date only
    return window.start_date is not None


def _shared_days(a: AvailabilityWindow, b: AvailabilityWindow) -> bool:
    """Whether two windows can ever be in effect on the same date"""
    starts = [d for d in (a.start_date, b.start_date) if d]
    ends = [d for d in (a.end_date, b.end_date) if d]
    lo = max(starts) if starts else None
    hi = min(ends) if ends else None
    if lo and hi and lo > hi:
        return False

    if a.day_of_week is not None and b.day_of_week is not None:
        return a.day_of_week == b.day_of_week

    # At least one explicit window, so lo is set; a week covers every weekday
    span = 7 if hi is None else min(7, (hi - lo).days + 1)
    return any(window_applies_on(a, d) and window_applies_on(b, d) for d in daterange(lo, span))


class AvailabilityService:
    """Service layer for the availability ledger"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AvailabilityRepository()

    def get_specialist(self, specialist_id: int) -> Specialist:
        specialist = self.db.query(Specialist).filter(Specialist.id == specialist_id).first()
        if not specialist:
            raise NotFoundError(f"Specialist {specialist_id} not found")
        return specialist

    # ------------------------------------------------------------------
    # Manual (provider-entered) ledger rows
    # ------------------------------------------------------------------

    def get_ledger(self, specialist_id: int) -> tuple[list[AvailabilityWindow], list[TimeOffBlock]]:
        self.get_specialist(specialist_id)
        windows = self.repo.get_windows(self.db, specialist_id, active_only=False)
        blocks = self.repo.get_time_off(self.db, specialist_id)
        return windows, blocks

    def add_window(self, specialist_id: int, data: WindowCreate) -> AvailabilityWindow:
        """Add a manual window, rejecting overlaps with other active manual windows"""
        self.get_specialist(specialist_id)

        end_date = data.endDate
        if data.dayOfWeek is None and end_date is None:
            end_date = data.startDate  # single-day explicit window

        window = AvailabilityWindow(
            specialist_id=specialist_id,
            day_of_week=data.dayOfWeek,
            start_date=data.startDate,
            end_date=end_date,
            start_time=parse_time(data.startTime),
            end_time=parse_time(data.endTime),
            is_active=data.isActive,
            location_override=data.locationOverride,
        )

        if window.is_active:
            for existing in self.repo.get_windows(self.db, specialist_id, manual_only=True):
                if _shared_days(window, existing) and intervals_overlap(
                    window.start_time, window.end_time, existing.start_time, existing.end_time
                ):
                    logger.warning(
                        f"⚠️ Window overlap for specialist {specialist_id}: conflicts with window {existing.id}"
                    )
                    raise AvailabilityConflictError(
                        f"Window overlaps existing availability window {existing.id}"
                    )

        self.repo.add(self.db, window)
        self.db.commit()
        self.db.refresh(window)
        logger.info(f"✅ Availability window {window.id} added for specialist {specialist_id}")
        return window

    def remove_window(self, specialist_id: int, window_id: int) -> None:
        window = self.repo.get_window(self.db, specialist_id, window_id)
        if not window:
            raise NotFoundError(f"Availability window {window_id} not found")
        if window.shift_assignment_id is not None:
            raise AvailabilityConflictError(
                "Window is managed by a shift assignment; cancel the shift instead",
                code="shift_managed",
            )
        self.db.delete(window)
        self.db.commit()
        logger.info(f"✅ Availability window {window_id} removed for specialist {specialist_id}")

    def add_time_off(self, specialist_id: int, data: TimeOffCreate) -> TimeOffBlock:
        self.get_specialist(specialist_id)
        block = TimeOffBlock(
            specialist_id=specialist_id,
            starts_at=data.startsAt,
            ends_at=data.endsAt,
            reason=data.reason,
            status="approved",
        )
        self.repo.add(self.db, block)
        self.db.commit()
        self.db.refresh(block)
        return block

    # ------------------------------------------------------------------
    # Bookable slots
    # ------------------------------------------------------------------

    def open_slots(
        self,
        specialist_id: int,
        start: datetime,
        end: datetime,
        slot_minutes: int = SLOT_MINUTES,
    ) -> Iterator[datetime]:
        """
        Yield bookable slot start times in [start, end), earliest first.

        Bookable time comes from active manual windows; shift-derived
        windows are clinic commitments, not patient-bookable. Time-off
        blocks (including shift blocks) and booked appointments remove slots.
        """
        windows = self.repo.get_windows(self.db, specialist_id, manual_only=True)
        if not windows:
            return

        slot = timedelta(minutes=slot_minutes)
        busy = [(b.starts_at, b.ends_at) for b in self.repo.get_time_off(self.db, specialist_id, start, end)]
        busy.extend(
            (a.scheduled_at, a.scheduled_at + timedelta(minutes=a.duration_minutes or slot_minutes))
            for a in self.repo.get_busy_appointments(self.db, specialist_id, start, end)
        )

        days = (end.date() - start.date()).days + 1
        for day in daterange(start.date(), days):
            candidates = []
            for window in windows:
                if not window_applies_on(window, day):
                    continue
                slot_start = datetime.combine(day, window.start_time)
                window_end = datetime.combine(day, window.end_time)
                while slot_start + slot <= window_end:
                    candidates.append(slot_start)
                    slot_start += slot

            for slot_start in sorted(set(candidates)):
                if slot_start < start or slot_start >= end:
                    continue
                slot_end = slot_start + slot
                if any(intervals_overlap(slot_start, slot_end, b_start, b_end) for b_start, b_end in busy):
                    continue
                yield slot_start

    def next_open_slot(
        self, specialist_id: int, now: datetime, horizon_days: int = AVAILABILITY_HORIZON_DAYS
    ) -> Optional[datetime]:
        # Slots must start strictly after now
        start = now + timedelta(microseconds=1)
        return next(self.open_slots(specialist_id, start, now + timedelta(days=horizon_days)), None)

    # ------------------------------------------------------------------
    # Shift-derived rows
    # ------------------------------------------------------------------

    def block_for_shift(self, shift_assignment_id: int, specialist_id: int, listing) -> tuple:
        """
        Write the tagged time-off block over the shift and the tagged
        shift-location override window. Does not commit.
        """
        block = TimeOffBlock(
            specialist_id=specialist_id,
            starts_at=listing.starts_at,
            ends_at=listing.ends_at,
            reason=f"Shift: {listing.title}",
            status="approved",
            shift_assignment_id=shift_assignment_id,
        )
        self.repo.add(self.db, block)

        shift_day = listing.starts_at.date()
        end_time = listing.ends_at.time()
        if listing.ends_at.date() > shift_day:
            # Overnight shift: the override covers the remainder of the start day
            end_time = time(23, 59, 59)

        window = AvailabilityWindow(
            specialist_id=specialist_id,
            day_of_week=None,
            start_date=shift_day,
            end_date=shift_day,
            start_time=listing.starts_at.time(),
            end_time=end_time,
            is_active=True,
            location_override=listing.location,
            shift_assignment_id=shift_assignment_id,
        )
        self.repo.add(self.db, window)
        return block, window

    def release_shift(self, shift_assignment_id: int) -> tuple[int, int]:
        """Remove only rows tagged with the assignment. Does not commit."""
        windows_deleted, blocks_deleted = self.repo.delete_shift_rows(self.db, shift_assignment_id)
        logger.info(
            f"🔓 Released shift assignment {shift_assignment_id}: "
            f"{windows_deleted} window(s), {blocks_deleted} block(s)"
        )
        return windows_deleted, blocks_deleted
