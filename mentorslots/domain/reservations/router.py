"""Reservation router - FastAPI endpoints for booking and cancellation"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_caller
from ...clock import SystemClock, get_clock
from ...database import get_db
from ...models import Reservation
from ...permissions import CallerContext
from .schemas import (
    AvailabilityProblem,
    AvailabilityResponse,
    ProblemSelection,
    ReservationCancel,
    ReservationChange,
    ReservationCreate,
    ReservationResponse,
    ReservationSlot,
    ScheduleResponse,
    SessionResponse,
)
from .service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["Reservations"])


def get_reservation_service(
    db: Session = Depends(get_db), clock: SystemClock = Depends(get_clock)
) -> ReservationService:
    """Dependency injection for ReservationService"""
    return ReservationService(db, clock)


def to_reservation_response(reservation: Reservation) -> ReservationResponse:
    slot = reservation.slot
    return ReservationResponse(
        id=reservation.id,
        studentId=reservation.student_id,
        studentName=reservation.student.name if reservation.student else None,
        status=reservation.status,
        createdAt=reservation.created_at,
        cancelledAt=reservation.cancelled_at,
        slot=ReservationSlot(
            id=slot.id,
            date=slot.date,
            timeSlot=slot.time_slot,
            sessionPeriod=slot.session_period,
            block=slot.block,
            teacherId=slot.teacher_id,
        ),
    )


@router.get("", response_model=list[ReservationResponse])
async def list_reservations(
    slot_date: Optional[date] = Query(None, alias="date"),
    status: Optional[str] = Query(None),
    student_id: Optional[int] = Query(None, alias="studentId"),
    caller: CallerContext = Depends(get_current_caller),
    service: ReservationService = Depends(get_reservation_service),
):
    reservations = service.list_reservations(caller, slot_date, status, student_id)
    return [to_reservation_response(r) for r in reservations]


@router.post("", response_model=ReservationResponse, status_code=201)
async def create_reservation(
    data: ReservationCreate,
    caller: CallerContext = Depends(get_current_caller),
    service: ReservationService = Depends(get_reservation_service),
):
    """Book a slot, spending one ticket"""
    reservation = service.book(caller, data.slotId, data.studentId)
    return to_reservation_response(reservation)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: ReservationService = Depends(get_reservation_service),
):
    return to_reservation_response(service.get_reservation(caller, reservation_id))


@router.patch("/{reservation_id}", response_model=ReservationResponse)
async def change_reservation_slot(
    reservation_id: int,
    data: ReservationChange,
    caller: CallerContext = Depends(get_current_caller),
    service: ReservationService = Depends(get_reservation_service),
):
    """Move a reservation to another slot (until the day before)"""
    reservation = service.change_slot(caller, reservation_id, data.newSlotId)
    return to_reservation_response(reservation)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: int,
    data: Optional[ReservationCancel] = None,
    caller: CallerContext = Depends(get_current_caller),
    service: ReservationService = Depends(get_reservation_service),
):
    """Cancel a reservation; refund=true returns the ticket (administrators only)"""
    refund = data.refund if data else False
    reservation = service.cancel(caller, reservation_id, refund=refund)
    return to_reservation_response(reservation)


@router.get("/{reservation_id}/problems/{problem_id}/availability", response_model=AvailabilityResponse)
async def check_problem_availability(
    reservation_id: int,
    problem_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: ReservationService = Depends(get_reservation_service),
):
    """Whether the problem can already be previewed for this reservation"""
    result = service.check_problem_availability(caller, reservation_id, problem_id)
    problem = result["problem"]
    schedule = result["schedule"]

    schedule_response = None
    if schedule is not None:
        data = schedule.to_dict()
        schedule_response = ScheduleResponse(
            scheduledStartAt=schedule.scheduled_start_at,
            visibleFrom=schedule.visible_from,
            canShowProblem=schedule.can_show_problem,
            timeUntilVisibleMs=data["time_until_visible_ms"],
            timeUntilStartMs=data["time_until_start_ms"],
            queuePosition=result["queue_position"],
            blockStartTime=result["block_start"],
            previewLeadMinutes=result["preview_lead_minutes"],
        )

    return AvailabilityResponse(
        canView=result["can_view"],
        reason=result["reason"],
        schedule=schedule_response,
        problem=AvailabilityProblem(
            id=problem.id,
            # Titles stay hidden until the preview window opens
            title=problem.title if result["can_view"] else None,
            status=problem.status,
        ),
    )


@router.post("/{reservation_id}/select-problem", response_model=SessionResponse, status_code=201)
async def select_problem(
    reservation_id: int,
    data: ProblemSelection,
    caller: CallerContext = Depends(get_current_caller),
    service: ReservationService = Depends(get_reservation_service),
):
    session = service.select_problem(caller, reservation_id, data.problemId)
    return SessionResponse(
        id=session.id,
        reservationId=session.reservation_id,
        problemId=session.problem_id,
        studentId=session.student_id,
        teacherId=session.teacher_id,
        status=session.status,
    )
