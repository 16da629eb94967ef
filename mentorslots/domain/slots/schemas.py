"""Slot domain schemas - Pydantic models for validation"""

from datetime import date as date_type
from typing import Optional

from pydantic import BaseModel, field_validator

from ...config import (
    DEFAULT_AM_END,
    DEFAULT_AM_START,
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_PM_END,
    DEFAULT_PM_START,
)
from ...shared.validators import validate_time_label


class SlotGenerationRequest(BaseModel):
    """Schema for expanding AM/PM templates into slots"""

    date: date_type
    teacherId: int
    amStart: str = DEFAULT_AM_START
    amEnd: str = DEFAULT_AM_END
    pmStart: str = DEFAULT_PM_START
    pmEnd: str = DEFAULT_PM_END
    intervalMinutes: int = DEFAULT_INTERVAL_MINUTES
    sessionOnly: Optional[str] = None  # "AM" | "PM" | None (both)

    @field_validator("amStart", "amEnd", "pmStart", "pmEnd")
    @classmethod
    def validate_times(cls, v: str) -> str:
        return validate_time_label(v)

    @field_validator("intervalMinutes")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1 or v > 240:
            raise ValueError("intervalMinutes must be between 1 and 240")
        return v

    @field_validator("sessionOnly")
    @classmethod
    def validate_session(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.upper()
        if v not in {"AM", "PM"}:
            raise ValueError("sessionOnly must be 'AM' or 'PM' when provided")
        return v


class SingleSlotRequest(BaseModel):
    date: date_type
    timeSlot: str
    teacherId: int
    sessionPeriod: Optional[str] = None

    @field_validator("timeSlot")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return validate_time_label(v)


class BreakToggleRequest(BaseModel):
    """Schema for marking a slot as a break or releasing it"""

    date: date_type
    timeSlot: str
    teacherId: int
    isBreak: bool

    @field_validator("timeSlot")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return validate_time_label(v)


class SlotResponse(BaseModel):
    id: int
    date: date_type
    timeSlot: str
    sessionPeriod: str
    block: int
    teacherId: int
    maxCapacity: int
    currentReservations: int
    isAvailable: bool
    isBreak: bool

    class Config:
        from_attributes = True


class SlotGenerationResponse(BaseModel):
    success: bool
    message: str
    slotsCreated: Optional[int] = None  # omitted when every slot already existed
    skipped: list[str] = []
    duplicate: bool = False
    teacher: str
    date: date_type
