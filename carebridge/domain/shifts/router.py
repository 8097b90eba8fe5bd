"""Shift router - accept/cancel synchronisation and applications"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...worker import enqueue_task
from .schemas import (
    BlockedTime,
    ShiftApplicationResponse,
    ShiftApplyRequest,
    ShiftApplyResponse,
    ShiftSyncRequest,
    ShiftSyncResponse,
)
from .service import ShiftService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shifts", tags=["Shifts"])


def get_shift_service(db: Session = Depends(get_db)) -> ShiftService:
    """Dependency injection for ShiftService"""
    return ShiftService(db)


@router.post("/sync", response_model=ShiftSyncResponse)
async def sync_shift(
    data: ShiftSyncRequest,
    service: ShiftService = Depends(get_shift_service),
):
    """
    Accept or cancel a shift and reconcile the specialist's availability.

    A lost accept race returns 409 with code "listing_unavailable".
    """
    if data.action == "accept":
        transition = service.accept(data.shiftListingId, data.specialistId)
        message = "Shift synchronized with availability calendar"
    else:
        transition = service.cancel(data.shiftListingId, data.specialistId)
        message = "Shift cancelled and availability restored"

    calendar_synced, warnings = await service.deliver(transition)

    if transition.action == "cancel":
        starts_at, ends_at = transition.blocked_time
        duration_minutes = int((ends_at - starts_at).total_seconds() // 60)
        queued = await enqueue_task(
            "match_waitlist_for_slot_task", data.specialistId, starts_at.isoformat(), duration_minutes
        )
        if not queued:
            warnings.append("Waitlist matching for the freed time will run on the next scheduled pass")

    starts_at, ends_at = transition.blocked_time
    return ShiftSyncResponse(
        success=True,
        message=message,
        shift_assignment_id=transition.assignment.id,
        blocked_time=BlockedTime(starts_at=starts_at, ends_at=ends_at),
        availability_added=transition.availability_added if transition.action == "accept" else None,
        calendar_synced=calendar_synced,
        warnings=warnings,
    )


@router.post("/{listing_id}/apply", response_model=ShiftApplyResponse)
async def apply_to_shift(
    listing_id: int,
    data: ShiftApplyRequest,
    service: ShiftService = Depends(get_shift_service),
):
    """Apply to a shift; high-scoring applicants may be confirmed instantly"""
    application, transition = service.apply(listing_id, data.specialistId, data.coverMessage)

    calendar_synced, warnings = None, []
    if transition is not None:
        calendar_synced, warnings = await service.deliver(transition)

    return ShiftApplyResponse(
        success=True,
        application=ShiftApplicationResponse.model_validate(application),
        auto_approved=transition is not None,
        message="Shift confirmed instantly!" if transition else "Application submitted successfully",
        shift_assignment_id=transition.assignment.id if transition else None,
        calendar_synced=calendar_synced,
        warnings=warnings,
    )
