"""Slot router - FastAPI endpoints for slot templates and breaks"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_caller
from ...database import get_db
from ...models import TimeSlot
from ...permissions import CallerContext
from .schemas import (
    BreakToggleRequest,
    SingleSlotRequest,
    SlotGenerationRequest,
    SlotGenerationResponse,
    SlotResponse,
)
from .service import SlotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slots", tags=["Slots"])


def get_slot_service(db: Session = Depends(get_db)) -> SlotService:
    """Dependency injection for SlotService"""
    return SlotService(db)


def to_slot_response(slot: TimeSlot) -> SlotResponse:
    return SlotResponse(
        id=slot.id,
        date=slot.date,
        timeSlot=slot.time_slot,
        sessionPeriod=slot.session_period,
        block=slot.block,
        teacherId=slot.teacher_id,
        maxCapacity=slot.max_capacity,
        currentReservations=slot.current_reservations,
        isAvailable=slot.is_available,
        isBreak=slot.is_break,
    )


@router.get("", response_model=list[SlotResponse])
async def list_slots(
    slot_date: Optional[date] = Query(None, alias="date"),
    teacher_id: Optional[int] = Query(None, alias="teacherId"),
    available_only: bool = Query(True, alias="availableOnly"),
    caller: CallerContext = Depends(get_current_caller),
    service: SlotService = Depends(get_slot_service),
):
    """List slots, bookable ones only unless availableOnly=false"""
    slots = service.list_slots(slot_date, teacher_id, available_only)
    return [to_slot_response(s) for s in slots]


@router.post("/generate", response_model=SlotGenerationResponse)
async def generate_time_slots(
    data: SlotGenerationRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: SlotService = Depends(get_slot_service),
):
    """Expand the AM/PM templates of one teacher and day into slots"""
    result = service.generate_time_slots(
        caller,
        data.date,
        data.teacherId,
        am_start=data.amStart,
        am_end=data.amEnd,
        pm_start=data.pmStart,
        pm_end=data.pmEnd,
        interval_minutes=data.intervalMinutes,
        session_only=data.sessionOnly,
    )
    return SlotGenerationResponse(
        success=result["success"],
        message=result["message"],
        slotsCreated=result["slots_created"],
        skipped=result["skipped"],
        duplicate=result["duplicate"],
        teacher=result["teacher"],
        date=result["date"],
    )


@router.post("/single", response_model=SlotResponse)
async def create_single_slot(
    data: SingleSlotRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: SlotService = Depends(get_slot_service),
):
    slot = service.create_single_slot(
        caller, data.date, data.timeSlot, data.teacherId, data.sessionPeriod
    )
    return to_slot_response(slot)


@router.patch("/break", response_model=SlotResponse)
async def set_break_time(
    data: BreakToggleRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: SlotService = Depends(get_slot_service),
):
    """Mark a slot as a break or make it bookable again"""
    slot = service.set_break(caller, data.date, data.timeSlot, data.teacherId, data.isBreak)
    return to_slot_response(slot)


@router.delete("")
async def remove_time_slot(
    slot_date: date = Query(..., alias="date"),
    time_slot: str = Query(..., alias="timeSlot"),
    teacher_id: int = Query(..., alias="teacherId"),
    caller: CallerContext = Depends(get_current_caller),
    service: SlotService = Depends(get_slot_service),
):
    return service.remove_time_slot(caller, slot_date, time_slot, teacher_id)
