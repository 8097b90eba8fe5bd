"""Availability domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ...shared.timeutils import parse_time


class WindowCreate(BaseModel):
    """Schema for a manually entered availability window"""

    dayOfWeek: Optional[int] = None
    startDate: Optional[date] = None
    endDate: Optional[date] = None
    startTime: str
    endTime: str
    isActive: bool = True
    locationOverride: Optional[str] = None

    @field_validator("dayOfWeek")
    @classmethod
    def validate_day(cls, v):
        if v is not None and not 0 <= v <= 6:
            raise ValueError("dayOfWeek must be between 0 (Sunday) and 6 (Saturday)")
        return v

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v):
        parse_time(v)
        return v

    @model_validator(mode="after")
    def validate_shape(self):
        if self.dayOfWeek is None and self.startDate is None:
            raise ValueError("Provide either dayOfWeek or an explicit startDate/endDate range")
        if self.startDate and self.endDate and self.endDate < self.startDate:
            raise ValueError("endDate must not be before startDate")
        if parse_time(self.endTime) <= parse_time(self.startTime):
            raise ValueError("endTime must be after startTime")
        return self


class TimeOffCreate(BaseModel):
    startsAt: datetime
    endsAt: datetime
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_range(self):
        if self.endsAt <= self.startsAt:
            raise ValueError("endsAt must be after startsAt")
        return self


class WindowResponse(BaseModel):
    id: int
    day_of_week: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: str
    end_time: str
    is_active: bool
    location_override: Optional[str] = None
    shift_assignment_id: Optional[int] = None

    @classmethod
    def from_model(cls, window) -> "WindowResponse":
        return cls(
            id=window.id,
            day_of_week=window.day_of_week,
            start_date=window.start_date,
            end_date=window.end_date,
            start_time=window.start_time.strftime("%H:%M:%S"),
            end_time=window.end_time.strftime("%H:%M:%S"),
            is_active=window.is_active,
            location_override=window.location_override,
            shift_assignment_id=window.shift_assignment_id,
        )


class TimeOffResponse(BaseModel):
    id: int
    starts_at: datetime
    ends_at: datetime
    reason: Optional[str] = None
    status: str
    shift_assignment_id: Optional[int] = None

    class Config:
        from_attributes = True


class LedgerResponse(BaseModel):
    specialist_id: int
    windows: list[WindowResponse]
    time_off: list[TimeOffResponse]


class NextSlotResponse(BaseModel):
    specialist_id: int
    next_available: Optional[datetime] = None
