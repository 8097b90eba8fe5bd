"""Availability router - provider-managed ledger endpoints"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...shared.timeutils import utcnow
from .schemas import (
    LedgerResponse,
    NextSlotResponse,
    TimeOffCreate,
    TimeOffResponse,
    WindowCreate,
    WindowResponse,
)
from .service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/availability", tags=["Availability"])


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


@router.get("/{specialist_id}", response_model=LedgerResponse)
async def get_ledger(
    specialist_id: int,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Windows (manual and shift-derived) and approved time-off for a specialist"""
    windows, blocks = service.get_ledger(specialist_id)
    return LedgerResponse(
        specialist_id=specialist_id,
        windows=[WindowResponse.from_model(w) for w in windows],
        time_off=[TimeOffResponse.model_validate(b) for b in blocks],
    )


@router.post("/{specialist_id}/windows", response_model=WindowResponse)
async def add_window(
    specialist_id: int,
    data: WindowCreate,
    service: AvailabilityService = Depends(get_availability_service),
):
    window = service.add_window(specialist_id, data)
    return WindowResponse.from_model(window)


@router.delete("/{specialist_id}/windows/{window_id}")
async def remove_window(
    specialist_id: int,
    window_id: int,
    service: AvailabilityService = Depends(get_availability_service),
):
    service.remove_window(specialist_id, window_id)
    return {"success": True, "message": "Availability window removed"}


@router.post("/{specialist_id}/time-off", response_model=TimeOffResponse)
async def add_time_off(
    specialist_id: int,
    data: TimeOffCreate,
    service: AvailabilityService = Depends(get_availability_service),
):
    block = service.add_time_off(specialist_id, data)
    return TimeOffResponse.model_validate(block)


@router.get("/{specialist_id}/next-slot", response_model=NextSlotResponse)
async def next_slot(
    specialist_id: int,
    service: AvailabilityService = Depends(get_availability_service),
):
    service.get_specialist(specialist_id)
    return NextSlotResponse(
        specialist_id=specialist_id,
        next_available=service.next_open_slot(specialist_id, utcnow()),
    )
