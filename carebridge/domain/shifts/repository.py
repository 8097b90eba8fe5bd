"""Shift repository - listings, applications and assignments"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import ShiftApplication, ShiftAssignment, ShiftListing, Specialist
from ...models_calendar import CalendarIntegration, CalendarMirror


class ShiftRepository:
    """Repository for shift data access. Callers own the transaction."""

    @staticmethod
    def get_listing(db: Session, listing_id: int) -> Optional[ShiftListing]:
        return db.query(ShiftListing).filter(ShiftListing.id == listing_id).first()

    @staticmethod
    def get_application(db: Session, listing_id: int, specialist_id: int) -> Optional[ShiftApplication]:
        return (
            db.query(ShiftApplication)
            .filter(
                ShiftApplication.shift_listing_id == listing_id,
                ShiftApplication.specialist_id == specialist_id,
            )
            .first()
        )

    @staticmethod
    def get_active_assignment(db: Session, listing_id: int, specialist_id: int) -> Optional[ShiftAssignment]:
        return (
            db.query(ShiftAssignment)
            .filter(
                ShiftAssignment.shift_listing_id == listing_id,
                ShiftAssignment.specialist_id == specialist_id,
                ShiftAssignment.status == "confirmed",
            )
            .first()
        )

    @staticmethod
    def lock_specialist(db: Session, specialist_id: int) -> Optional[Specialist]:
        """SELECT ... FOR UPDATE on the specialist; held until the caller commits or rolls back"""
        return db.query(Specialist).filter(Specialist.id == specialist_id).with_for_update().first()

    @staticmethod
    def claim_open_listing(db: Session, listing_id: int, specialist_id: int, now: datetime) -> bool:
        """
        Compare-and-swap open -> filled. Returns False when another accept
        (or a cancellation of the listing) got there first.
        """
        updated = (
            db.query(ShiftListing)
            .filter(ShiftListing.id == listing_id, ShiftListing.status == "open")
            .update(
                {
                    ShiftListing.status: "filled",
                    ShiftListing.filled_at: now,
                    ShiftListing.assigned_specialist_id: specialist_id,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def set_current_assignment(db: Session, listing_id: int, assignment_id: int) -> None:
        db.query(ShiftListing).filter(ShiftListing.id == listing_id).update(
            {ShiftListing.current_assignment_id: assignment_id}, synchronize_session=False
        )

    @staticmethod
    def reopen_listing(db: Session, listing_id: int, assignment_id: int) -> bool:
        """filled -> open, only while this assignment is still the listing's current one"""
        updated = (
            db.query(ShiftListing)
            .filter(
                ShiftListing.id == listing_id,
                ShiftListing.status == "filled",
                ShiftListing.current_assignment_id == assignment_id,
            )
            .update(
                {
                    ShiftListing.status: "open",
                    ShiftListing.filled_at: None,
                    ShiftListing.assigned_specialist_id: None,
                    ShiftListing.current_assignment_id: None,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def increment_applications(db: Session, listing_id: int) -> None:
        db.query(ShiftListing).filter(ShiftListing.id == listing_id).update(
            {ShiftListing.applications_count: ShiftListing.applications_count + 1},
            synchronize_session=False,
        )

    @staticmethod
    def get_sync_integrations(db: Session, specialist_id: int) -> list[CalendarIntegration]:
        return (
            db.query(CalendarIntegration)
            .filter(
                CalendarIntegration.specialist_id == specialist_id,
                CalendarIntegration.sync_enabled.is_(True),
            )
            .all()
        )

    @staticmethod
    def get_mirrors(db: Session, assignment_id: int) -> list[CalendarMirror]:
        return db.query(CalendarMirror).filter(CalendarMirror.shift_assignment_id == assignment_id).all()

    @staticmethod
    def get_finished_assignments(db: Session, now: datetime) -> list[ShiftAssignment]:
        return (
            db.query(ShiftAssignment)
            .join(ShiftListing, ShiftListing.id == ShiftAssignment.shift_listing_id)
            .filter(ShiftAssignment.status == "confirmed", ShiftListing.ends_at <= now)
            .all()
        )
