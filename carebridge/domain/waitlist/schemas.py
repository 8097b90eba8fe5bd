"""Waitlist domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...config import WAITLIST_DEFAULT_MAX_WAIT_DAYS
from ...shared.timeutils import TIME_OF_DAY_BUCKETS


class WaitlistCreate(BaseModel):
    """Unmet search persisted for re-matching"""

    patientId: int
    specialty: str
    language: Optional[str] = None
    specialistId: Optional[int] = None
    preferredTimes: list[str] = []
    preferredDate: Optional[date] = None
    urgencyScore: float = Field(0, ge=0, le=100)
    maxWaitDays: int = Field(WAITLIST_DEFAULT_MAX_WAIT_DAYS, ge=1, le=365)

    @field_validator("specialty")
    @classmethod
    def validate_specialty(cls, v):
        if not v or not v.strip():
            raise ValueError("specialty is required")
        return v.strip()

    @field_validator("preferredTimes")
    @classmethod
    def validate_preferred_times(cls, v):
        cleaned = []
        for item in v or []:
            item = item.strip().lower()
            if item not in TIME_OF_DAY_BUCKETS:
                raise ValueError(f"preferredTimes must be any of: {', '.join(TIME_OF_DAY_BUCKETS)}")
            if item not in cleaned:
                cleaned.append(item)
        return cleaned


class SlotFreedRequest(BaseModel):
    specialistId: int
    startsAt: datetime
    durationMinutes: int = Field(30, ge=5, le=24 * 60)


class WaitlistEntryResponse(BaseModel):
    id: int
    patient_id: int
    specialty: str
    language: Optional[str] = None
    specialist_id: Optional[int] = None
    preferred_times: list[str] = []
    preferred_date: Optional[date] = None
    urgency_score: float
    max_wait_days: int
    status: str
    match_results: list[dict] = []
    best_match_score: Optional[float] = None
    matched_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    expires_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class MatchRunResponse(BaseModel):
    success: bool = True
    evaluated: int = 0
    matched: int = 0
    notified: int = 0
    expired: int = 0
