"""Waitlist router - queue unmet searches and trigger re-matching"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.outbox import OutboxDispatcher
from .schemas import MatchRunResponse, SlotFreedRequest, WaitlistCreate, WaitlistEntryResponse
from .service import WaitlistService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


def get_waitlist_service(db: Session = Depends(get_db)) -> WaitlistService:
    """Dependency injection for WaitlistService"""
    return WaitlistService(db)


async def _deliver_notifications(service: WaitlistService, summary: dict) -> MatchRunResponse:
    if summary["notification_ids"]:
        await OutboxDispatcher(service.db).deliver(summary["notification_ids"])
    return MatchRunResponse(
        success=True,
        evaluated=summary["evaluated"],
        matched=summary["matched"],
        notified=summary["notified"],
        expired=summary.get("expired", 0),
    )


@router.post("", response_model=WaitlistEntryResponse)
async def create_waitlist_entry(
    data: WaitlistCreate,
    service: WaitlistService = Depends(get_waitlist_service),
):
    entry = service.create_entry(data)
    return WaitlistEntryResponse.model_validate(entry)


@router.get("/{entry_id}", response_model=WaitlistEntryResponse)
async def get_waitlist_entry(
    entry_id: int,
    service: WaitlistService = Depends(get_waitlist_service),
):
    return WaitlistEntryResponse.model_validate(service.get(entry_id))


@router.post("/{entry_id}/revert", response_model=WaitlistEntryResponse)
async def revert_waitlist_entry(
    entry_id: int,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Put a matched entry back in the queue so the next match notifies again"""
    return WaitlistEntryResponse.model_validate(service.revert_to_active(entry_id))


@router.delete("/{entry_id}")
async def close_waitlist_entry(
    entry_id: int,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Remove an entry once the patient has booked"""
    service.close_on_booking(entry_id)
    return {"success": True, "message": "Waitlist entry closed"}


@router.post("/slot-freed", response_model=MatchRunResponse)
async def slot_freed(
    data: SlotFreedRequest,
    service: WaitlistService = Depends(get_waitlist_service),
):
    summary = service.match_freed_slot(data.specialistId, data.startsAt, data.durationMinutes)
    return await _deliver_notifications(service, summary)


@router.post("/run", response_model=MatchRunResponse)
async def run_waitlist_matching(
    service: WaitlistService = Depends(get_waitlist_service),
):
    summary = service.run()
    return await _deliver_notifications(service, summary)
