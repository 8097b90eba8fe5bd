"""
Shift synchronizer - applies, accepts, cancels and completes shift assignments.

Every transition writes its ledger rows and outbox messages in one
transaction. Calendar mirroring and notifications are delivered after the
commit; their failure is reported, never rolled back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import AUTO_APPROVE_MIN_RATING, AUTO_APPROVE_MIN_SCORE, SHIFT_APPLICATION_TTL_HOURS
from ...errors import NotFoundError, ShiftActionError, ShiftConflictError
from ...models import ShiftApplication, ShiftAssignment, ShiftListing, Specialist, TimeOffBlock
from ...services.outbox import (
    CALENDAR_CREATE,
    CALENDAR_DELETE,
    OutboxDispatcher,
    queue_message,
    queue_notification,
    supersede_undelivered,
)
from ...shared.timeutils import utcnow
from ..availability.service import AvailabilityService
from ..directory.schemas import ProviderCandidate
from ..matching.scoring import SHIFT_APPLICATION_WEIGHTS, MatchCriteria, ScoringContext, score
from .repository import ShiftRepository

logger = logging.getLogger(__name__)

AGGREGATE = "shift_assignment"


@dataclass
class ShiftTransition:
    """Outcome of an accept or cancel, plus the outbox rows it queued"""

    action: str
    listing: ShiftListing
    assignment: ShiftAssignment
    blocked_time: Optional[tuple] = None
    availability_added: bool = False
    listing_reopened: bool = False
    outbox_ids: list = field(default_factory=list)
    calendar_message_ids: list = field(default_factory=list)


class ShiftService:
    """Service layer for the shift assignment state machine"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ShiftRepository()
        self.availability = AvailabilityService(db)

    def _get_specialist(self, specialist_id: int) -> Specialist:
        specialist = self.db.query(Specialist).filter(Specialist.id == specialist_id).first()
        if not specialist:
            raise NotFoundError(f"Specialist {specialist_id} not found")
        return specialist

    def _get_listing(self, listing_id: int) -> ShiftListing:
        listing = self.repo.get_listing(self.db, listing_id)
        if not listing:
            raise NotFoundError(f"Shift listing {listing_id} not found")
        return listing

    def _has_overlapping_shift(self, specialist_id: int, listing: ShiftListing) -> bool:
        return (
            self.db.query(TimeOffBlock.id)
            .filter(
                TimeOffBlock.specialist_id == specialist_id,
                TimeOffBlock.shift_assignment_id.isnot(None),
                TimeOffBlock.starts_at < listing.ends_at,
                TimeOffBlock.ends_at > listing.starts_at,
            )
            .first()
            is not None
        )

    # ------------------------------------------------------------------
    # apply
    # ------------------------------------------------------------------

    def score_application(self, specialist: Specialist, listing: ShiftListing, now: datetime):
        candidate = ProviderCandidate.from_model(specialist)
        criteria = MatchCriteria(specialties=tuple(listing.specialty_required or ()))
        context = ScoringContext(now=now, urgent=listing.urgency_level == "emergency")
        return score(criteria, candidate, context, SHIFT_APPLICATION_WEIGHTS)

    def apply(
        self, listing_id: int, specialist_id: int, cover_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[ShiftApplication, Optional[ShiftTransition]]:
        """
        Record an application; auto-approved applications go straight
        through accept().
        """
        now = now or utcnow()
        specialist = self._get_specialist(specialist_id)
        if specialist.verification_status != "verified":
            raise ShiftActionError("Credentials must be verified before applying to shifts")

        listing = self._get_listing(listing_id)
        if listing.status != "open":
            raise ShiftConflictError("Shift is no longer available")
        if self.repo.get_application(self.db, listing_id, specialist_id):
            raise ShiftConflictError("Already applied to this shift", code="already_applied")

        match = self.score_application(specialist, listing, now)
        auto_approve = bool(
            listing.auto_accept_high_rated
            and match.score >= AUTO_APPROVE_MIN_SCORE
            and (specialist.average_rating or 0) >= AUTO_APPROVE_MIN_RATING
        )

        application = ShiftApplication(
            shift_listing_id=listing_id,
            specialist_id=specialist_id,
            cover_message=cover_message,
            match_score=match.score,
            match_factors=match.breakdown,
            application_status="auto_approved" if auto_approve else "pending",
            expires_at=now + timedelta(hours=SHIFT_APPLICATION_TTL_HOURS),
        )
        self.db.add(application)
        self.repo.increment_applications(self.db, listing_id)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ShiftConflictError("Already applied to this shift", code="already_applied") from e
        self.db.refresh(application)
        logger.info(
            f"📝 Specialist {specialist_id} applied to shift {listing_id} "
            f"(score={match.score}, auto_approved={auto_approve})"
        )

        if not auto_approve:
            return application, None

        try:
            transition = self.accept(listing_id, specialist_id, application=application, now=now)
        except ShiftConflictError:
            # Lost the race to another accept; the application stays on file
            logger.warning(f"⚠️ Auto-approval for shift {listing_id} lost to a concurrent accept")
            application.application_status = "pending"
            self.db.commit()
            return application, None
        return application, transition

    # ------------------------------------------------------------------
    # accept
    # ------------------------------------------------------------------

    def accept(
        self, listing_id: int, specialist_id: int, application: Optional[ShiftApplication] = None,
        now: Optional[datetime] = None,
    ) -> ShiftTransition:
        """
        Confirm a specialist for an open listing.

        Raises:
            ShiftConflictError: Listing not open, or the specialist already has an
                overlapping shift. Nothing is written.
        """
        now = now or utcnow()
        specialist = self._get_specialist(specialist_id)
        listing = self._get_listing(listing_id)

        if listing.status != "open":
            raise ShiftConflictError(f"Shift listing {listing_id} is no longer open")

        try:
            # Concurrent accepts by one specialist queue here, so the overlap
            # check below sees every shift committed before it
            self.repo.lock_specialist(self.db, specialist_id)
            if self._has_overlapping_shift(specialist_id, listing):
                self.db.rollback()
                raise ShiftConflictError(
                    "Specialist already has a shift during this time", code="specialist_unavailable"
                )

            if not self.repo.claim_open_listing(self.db, listing_id, specialist_id, now):
                self.db.rollback()
                logger.warning(f"⚠️ Shift {listing_id} was filled concurrently; accept by {specialist_id} lost")
                raise ShiftConflictError(f"Shift listing {listing_id} is no longer open")

            if application is None:
                application = self.repo.get_application(self.db, listing_id, specialist_id)

            assignment = ShiftAssignment(
                shift_listing_id=listing_id,
                specialist_id=specialist_id,
                application_id=application.id if application else None,
                status="confirmed",
                confirmed_at=now,
            )
            self.db.add(assignment)
            self.db.flush()
            self.repo.set_current_assignment(self.db, listing_id, assignment.id)

            if application is not None and application.application_status == "pending":
                application.application_status = "accepted"

            self.availability.block_for_shift(assignment.id, specialist_id, listing)

            calendar_ids = []
            for integration in self.repo.get_sync_integrations(self.db, specialist_id):
                message = queue_message(
                    self.db,
                    CALENDAR_CREATE,
                    AGGREGATE,
                    assignment.id,
                    {
                        "integration_id": integration.id,
                        "title": listing.title,
                        "location": listing.location,
                        "starts_at": listing.starts_at.isoformat(),
                        "ends_at": listing.ends_at.isoformat(),
                    },
                    user_id=specialist.user_id,
                    now=now,
                )
                calendar_ids.append(message.id)

            notification = queue_notification(
                self.db,
                specialist.user_id,
                f"Shift confirmed: {listing.title} on {listing.starts_at:%Y-%m-%d %H:%M}",
                {"type": "shift_confirmed", "assignment_id": assignment.id, "shift_listing_id": listing_id},
                AGGREGATE,
                assignment.id,
                now=now,
            )
            self.db.commit()
        except IntegrityError as e:
            # Partial unique index: another live assignment exists for the listing
            self.db.rollback()
            raise ShiftConflictError(f"Shift listing {listing_id} is no longer open") from e

        self.db.refresh(listing)
        logger.info(f"✅ Shift {listing_id} confirmed for specialist {specialist_id} (assignment {assignment.id})")
        return ShiftTransition(
            action="accept",
            listing=listing,
            assignment=assignment,
            blocked_time=(listing.starts_at, listing.ends_at),
            availability_added=True,
            outbox_ids=calendar_ids + [notification.id],
            calendar_message_ids=calendar_ids,
        )

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    def cancel(self, listing_id: int, specialist_id: int, now: Optional[datetime] = None) -> ShiftTransition:
        """
        Cancel a confirmed assignment, removing only its own ledger rows and
        reopening the listing unless a replacement has been confirmed.
        """
        now = now or utcnow()
        specialist = self._get_specialist(specialist_id)
        listing = self._get_listing(listing_id)
        assignment = self.repo.get_active_assignment(self.db, listing_id, specialist_id)
        if not assignment:
            raise NotFoundError(f"No active assignment for specialist {specialist_id} on shift {listing_id}")

        updated = (
            self.db.query(ShiftAssignment)
            .filter(ShiftAssignment.id == assignment.id, ShiftAssignment.status == "confirmed")
            .update(
                {ShiftAssignment.status: "cancelled", ShiftAssignment.cancelled_at: now},
                synchronize_session=False,
            )
        )
        if not updated:
            self.db.rollback()
            raise NotFoundError(f"No active assignment for specialist {specialist_id} on shift {listing_id}")

        self.availability.release_shift(assignment.id)
        reopened = self.repo.reopen_listing(self.db, listing_id, assignment.id)

        supersede_undelivered(self.db, CALENDAR_CREATE, AGGREGATE, assignment.id)
        calendar_ids = []
        for mirror in self.repo.get_mirrors(self.db, assignment.id):
            message = queue_message(
                self.db,
                CALENDAR_DELETE,
                AGGREGATE,
                assignment.id,
                {"integration_id": mirror.integration_id, "external_event_id": mirror.external_event_id},
                user_id=specialist.user_id,
                now=now,
            )
            calendar_ids.append(message.id)

        notification = queue_notification(
            self.db,
            specialist.user_id,
            f"Shift cancelled: {listing.title} on {listing.starts_at:%Y-%m-%d %H:%M}",
            {"type": "shift_cancelled", "assignment_id": assignment.id, "shift_listing_id": listing_id},
            AGGREGATE,
            assignment.id,
            now=now,
        )
        self.db.commit()
        self.db.refresh(listing)
        self.db.refresh(assignment)

        logger.info(
            f"🔄 Shift {listing_id} cancelled for specialist {specialist_id} "
            f"(assignment {assignment.id}, listing reopened={reopened})"
        )
        return ShiftTransition(
            action="cancel",
            listing=listing,
            assignment=assignment,
            blocked_time=(listing.starts_at, listing.ends_at),
            listing_reopened=reopened,
            outbox_ids=calendar_ids + [notification.id],
            calendar_message_ids=calendar_ids,
        )

    # ------------------------------------------------------------------
    # completion + delivery
    # ------------------------------------------------------------------

    def complete_finished(self, now: Optional[datetime] = None) -> int:
        """Mark confirmed assignments whose shift has ended as completed"""
        now = now or utcnow()
        finished = self.repo.get_finished_assignments(self.db, now)
        for assignment in finished:
            assignment.status = "completed"
            assignment.completed_at = now
        self.db.commit()
        if finished:
            logger.info(f"✅ Completed {len(finished)} finished shift assignment(s)")
        return len(finished)

    async def deliver(self, transition: ShiftTransition) -> tuple[Optional[bool], list[str]]:
        """
        Deliver the transition's outbox messages inline.

        Returns:
            (calendar_synced, warnings). calendar_synced is None when the
            specialist has no calendar to mirror.
        """
        warnings = []
        delivered = await OutboxDispatcher(self.db).deliver(transition.outbox_ids)
        by_id = {m.id: m for m in delivered}

        calendar_synced = None
        if transition.calendar_message_ids:
            calendar_synced = True
            for message_id in transition.calendar_message_ids:
                message = by_id.get(message_id)
                if message is None or message.status not in ("delivered", "superseded"):
                    calendar_synced = False
            if not calendar_synced:
                warnings.append("Calendar sync failed; it will be retried automatically")

        for message in delivered:
            if message.kind == "notification" and message.status in ("failed", "dead"):
                warnings.append("Notification could not be delivered yet; it will be retried automatically")

        return calendar_synced, warnings
