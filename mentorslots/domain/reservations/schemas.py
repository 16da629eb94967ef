"""Reservation domain schemas - Pydantic models for validation"""

from datetime import date as date_type
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ReservationCreate(BaseModel):
    """Schema for booking a slot; studentId is only honoured for administrators"""

    slotId: int
    studentId: Optional[int] = None


class ReservationChange(BaseModel):
    """Schema for moving a reservation to another slot"""

    newSlotId: int


class ReservationCancel(BaseModel):
    refund: bool = False


class ProblemSelection(BaseModel):
    problemId: int


class ReservationSlot(BaseModel):
    id: int
    date: date_type
    timeSlot: str
    sessionPeriod: str
    block: int
    teacherId: int


class ReservationResponse(BaseModel):
    id: int
    studentId: int
    studentName: Optional[str] = None
    status: str
    createdAt: datetime
    cancelledAt: Optional[datetime] = None
    slot: ReservationSlot


class ScheduleResponse(BaseModel):
    scheduledStartAt: datetime
    visibleFrom: datetime
    canShowProblem: bool
    timeUntilVisibleMs: int
    timeUntilStartMs: int
    queuePosition: int
    blockStartTime: datetime
    previewLeadMinutes: int


class AvailabilityProblem(BaseModel):
    id: int
    title: Optional[str] = None
    status: str


class AvailabilityResponse(BaseModel):
    canView: bool
    reason: str
    schedule: Optional[ScheduleResponse] = None
    problem: AvailabilityProblem


class SessionResponse(BaseModel):
    id: int
    reservationId: int
    problemId: int
    studentId: int
    teacherId: int
    status: str
