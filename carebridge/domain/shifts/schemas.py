"""Shift domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

SHIFT_ACTIONS = ("accept", "cancel")


class ShiftSyncRequest(BaseModel):
    """Accept or cancel a shift for a specialist"""

    shiftListingId: int
    specialistId: int
    action: str

    @field_validator("action")
    @classmethod
    def validate_action(cls, v):
        v = (v or "").strip().lower()
        if v not in SHIFT_ACTIONS:
            raise ValueError(f"action must be one of: {', '.join(SHIFT_ACTIONS)}")
        return v


class ShiftApplyRequest(BaseModel):
    specialistId: int
    coverMessage: Optional[str] = None


class BlockedTime(BaseModel):
    starts_at: datetime
    ends_at: datetime


class ShiftSyncResponse(BaseModel):
    success: bool = True
    message: str
    shift_assignment_id: Optional[int] = None
    blocked_time: Optional[BlockedTime] = None
    availability_added: Optional[bool] = None
    calendar_synced: Optional[bool] = None
    warnings: list[str] = []


class ShiftApplicationResponse(BaseModel):
    id: int
    shift_listing_id: int
    specialist_id: int
    cover_message: Optional[str] = None
    match_score: Optional[float] = None
    match_factors: Optional[dict] = None
    application_status: str
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ShiftApplyResponse(BaseModel):
    success: bool = True
    application: ShiftApplicationResponse
    auto_approved: bool
    message: str
    shift_assignment_id: Optional[int] = None
    calendar_synced: Optional[bool] = None
    warnings: list[str] = []
