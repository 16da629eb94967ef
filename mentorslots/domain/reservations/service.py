"""Reservation service - Admission control, cancellation and problem access"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...clock import SystemClock
from ...config import MAX_DAILY_RESERVATIONS, MAX_TEACHER_DAILY_RESERVATIONS
from ...errors import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    PermissionDeniedError,
    ReservationRuleError,
    SlotFullError,
    ValidationError,
)
from ...models import Reservation, TimeSlot
from ...permissions import (
    BOOK_ON_BEHALF,
    CANCEL_OWN_RESERVATION,
    CREATE_RESERVATION,
    SELECT_PROBLEM,
    VIEW_ALL_RESERVATIONS,
    VIEW_OWN_RESERVATIONS,
    CallerContext,
    authorize,
)
from ...services.publication_scheduler import (
    ScheduleComputation,
    calculate_problem_schedule,
    format_time_remaining,
    get_block_start_time,
)
from ...shared.transactions import unit_of_work
from ..slots.repository import SlotRepository
from ..tickets.service import TicketLedger
from .repository import ReservationRepository

logger = logging.getLogger(__name__)


class ReservationService:
    """Service layer for reservation operations"""

    def __init__(self, db: Session, clock: SystemClock):
        self.db = db
        self.clock = clock
        self.repo = ReservationRepository()
        self.slots = SlotRepository()
        self.ledger = TicketLedger(db)

    def _resolve_student(self, caller: CallerContext, student_id: Optional[int]) -> int:
        authorize(caller, CREATE_RESERVATION)
        if student_id is None or student_id == caller.account_id:
            return caller.account_id
        authorize(caller, BOOK_ON_BEHALF)
        return student_id

    def _check_daily_rules(
        self, student_id: int, slot: TimeSlot, exclude_reservation_id: Optional[int] = None
    ) -> None:
        """First-come-first-served, but no student may hoard one day's slots"""
        same_day = [
            r
            for r in self.repo.get_active_for_day(self.db, student_id, slot.date)
            if r.id != exclude_reservation_id
        ]

        if len(same_day) >= MAX_DAILY_RESERVATIONS:
            raise ReservationRuleError(
                f"Daily reservation limit ({MAX_DAILY_RESERVATIONS}) reached.",
                rule="daily_limit_exceeded",
            )

        if any(r.slot.session_period != slot.session_period for r in same_day):
            raise ReservationRuleError(
                "Morning and afternoon sessions cannot be mixed on the same day.",
                rule="session_crossing",
            )

        with_teacher = [r for r in same_day if r.slot.teacher_id == slot.teacher_id]
        if len(with_teacher) >= MAX_TEACHER_DAILY_RESERVATIONS:
            raise ReservationRuleError(
                f"At most {MAX_TEACHER_DAILY_RESERVATIONS} reservations per teacher per day.",
                rule="teacher_limit_exceeded",
            )

    def book(
        self, caller: CallerContext, slot_id: int, student_id: Optional[int] = None
    ) -> Reservation:
        """
        Book one capacity unit of a slot for a student.

        Slot check, balance check, reservation insert, ticket debit and the
        occupancy increment commit together or not at all. When several
        callers race for the last unit exactly one wins; the others get
        SlotFullError.
        """
        student_id = self._resolve_student(caller, student_id)

        with unit_of_work(self.db, "Create reservation"):
            slot = self.slots.get_slot_by_id(self.db, slot_id, for_update=True)
            if not slot:
                raise NotFoundError("Time slot not found", slot_id=slot_id)
            if not slot.is_available or slot.current_reservations >= slot.max_capacity:
                raise SlotFullError("This time slot is already fully booked.", slot_id=slot_id)

            student = self.repo.get_student(self.db, student_id, for_update=True)
            if not student:
                raise NotFoundError("Student not found", student_id=student_id)
            if student.current_tickets < 1:
                raise InsufficientBalanceError(
                    "Not enough tickets. Please ask an administrator for more.",
                    student_id=student_id,
                )

            self._check_daily_rules(student_id, slot)

            reservation = self.repo.create_reservation(
                self.db, student_id, slot_id, self.clock.now_utc_naive()
            )
            self.ledger.consume(student_id, 1)
            if self.repo.occupy_slot(self.db, slot_id) == 0:
                raise SlotFullError("This time slot is already fully booked.", slot_id=slot_id)

        self.db.refresh(reservation)
        logger.info(
            f"Reservation {reservation.id} created: student {student_id} slot {slot_id} "
            f"({slot.date} {slot.time_slot})"
        )
        return reservation

    def cancel(self, caller: CallerContext, reservation_id: int, refund: bool = False) -> Reservation:
        """
        Cancel an active reservation and free its slot.
        Tickets are not returned unless an administrator asks for a refund.
        """
        authorize(caller, CANCEL_OWN_RESERVATION)
        if refund and not caller.is_admin:
            raise PermissionDeniedError("Only administrators can refund a ticket on cancellation.")

        with unit_of_work(self.db, "Cancel reservation"):
            reservation = self.repo.get_reservation(self.db, reservation_id, for_update=True)
            if not reservation:
                raise NotFoundError("Reservation not found", reservation_id=reservation_id)
            if reservation.student_id != caller.account_id and not caller.is_admin:
                raise PermissionDeniedError("You can only cancel your own reservations.")
            if reservation.status != "active":
                raise ConflictError(
                    "Only active reservations can be cancelled.", status=reservation.status
                )
            if self.repo.get_session_for_reservation(self.db, reservation_id):
                raise ConflictError("A reservation with a started session cannot be cancelled.")

            reservation.status = "cancelled"
            reservation.cancelled_at = self.clock.now_utc_naive()
            self.repo.release_slot(self.db, reservation.slot_id)
            if refund:
                self.ledger.refund(reservation.student_id, 1)

        self.db.refresh(reservation)
        logger.info(
            f"Reservation {reservation_id} cancelled by {caller.account_id}"
            + (" with ticket refund" if refund else "")
        )
        return reservation

    def change_slot(self, caller: CallerContext, reservation_id: int, new_slot_id: int) -> Reservation:
        """
        Move an active reservation to another slot, at the latest on the day
        before the reservation (until 23:59 civil time).

        The new slot is taken and the old one released in one transaction; the
        ticket stays spent. Daily rules are re-checked without counting the
        reservation being moved. The moved reservation joins the end of its
        new block's queue.
        """
        authorize(caller, CREATE_RESERVATION)

        with unit_of_work(self.db, "Change reservation slot"):
            reservation = self.repo.get_reservation(self.db, reservation_id, for_update=True)
            if not reservation:
                raise NotFoundError("Reservation not found", reservation_id=reservation_id)
            if reservation.student_id != caller.account_id and not caller.is_admin:
                raise PermissionDeniedError("You can only change your own reservations.")
            if reservation.status != "active":
                raise ConflictError(
                    "Only active reservations can be changed.", status=reservation.status
                )
            old_slot_id = reservation.slot_id
            if new_slot_id == old_slot_id:
                raise ValidationError("The reservation is already in this slot.")

            # Both slots locked in id order
            locked = {
                slot_id: self.slots.get_slot_by_id(self.db, slot_id, for_update=True)
                for slot_id in sorted((old_slot_id, new_slot_id))
            }
            old_slot, new_slot = locked[old_slot_id], locked[new_slot_id]
            if not new_slot:
                raise NotFoundError("Time slot not found", slot_id=new_slot_id)

            if self.clock.now().date() >= old_slot.date:
                raise ValidationError(
                    "Reservations can only be changed until 23:59 the day before.",
                    slot_date=str(old_slot.date),
                )
            if self.repo.get_session_for_reservation(self.db, reservation_id):
                raise ConflictError("A reservation with a started session cannot be changed.")
            if not new_slot.is_available or new_slot.current_reservations >= new_slot.max_capacity:
                raise SlotFullError("The new time slot is already fully booked.", slot_id=new_slot_id)

            self._check_daily_rules(
                reservation.student_id, new_slot, exclude_reservation_id=reservation.id
            )

            if self.repo.occupy_slot(self.db, new_slot_id) == 0:
                raise SlotFullError("The new time slot is already fully booked.", slot_id=new_slot_id)
            self.repo.release_slot(self.db, old_slot_id)
            reservation.slot_id = new_slot_id
            reservation.created_at = self.clock.now_utc_naive()

        self.db.refresh(reservation)
        logger.info(
            f"Reservation {reservation_id} moved from slot {old_slot_id} to {new_slot_id} "
            f"by {caller.account_id}"
        )
        return reservation

    def list_reservations(
        self,
        caller: CallerContext,
        slot_date: Optional[date] = None,
        status: Optional[str] = None,
        student_id: Optional[int] = None,
    ) -> list[Reservation]:
        """Students see their own reservations; teachers see their slots; admins see all"""
        if caller.can(VIEW_ALL_RESERVATIONS):
            teacher_id = caller.account_id if caller.role == "teacher" else None
            return self.repo.list_reservations(self.db, student_id, slot_date, teacher_id, status)

        authorize(caller, VIEW_OWN_RESERVATIONS)
        return self.repo.list_reservations(self.db, caller.account_id, slot_date, None, status)

    def get_reservation(self, caller: CallerContext, reservation_id: int) -> Reservation:
        reservation = self.repo.get_reservation(self.db, reservation_id)
        if not reservation:
            raise NotFoundError("Reservation not found", reservation_id=reservation_id)

        if caller.is_admin:
            return reservation
        if caller.role == "teacher" and reservation.slot.teacher_id == caller.account_id:
            return reservation
        if reservation.student_id == caller.account_id:
            return reservation
        raise PermissionDeniedError("You do not have access to this reservation.")

    def get_queue_position(self, reservation: Reservation) -> int:
        """1-based position among the active reservations of the same block"""
        queue = self.repo.get_block_queue(self.db, reservation.slot)
        if reservation.id not in queue:
            raise ConflictError("Reservation is not queued.", reservation_id=reservation.id)
        return queue.index(reservation.id) + 1

    def get_schedule(self, reservation: Reservation, preview_lead_minutes: int) -> dict:
        slot = reservation.slot
        queue_position = self.get_queue_position(reservation)
        block_start = get_block_start_time(slot.date, slot.block)
        schedule: ScheduleComputation = calculate_problem_schedule(
            block_start, queue_position, preview_lead_minutes, self.clock.now()
        )
        return {
            "schedule": schedule,
            "queue_position": queue_position,
            "block_start": block_start,
        }

    def check_problem_availability(
        self, caller: CallerContext, reservation_id: int, problem_id: int
    ) -> dict:
        """Whether the student may preview a problem for one of their reservations"""
        authorize(caller, SELECT_PROBLEM)

        reservation = self.repo.get_reservation(self.db, reservation_id)
        if (
            not reservation
            or reservation.student_id != caller.account_id
            or reservation.status != "active"
        ):
            raise NotFoundError("Reservation not found", reservation_id=reservation_id)

        problem = self.repo.get_problem(self.db, problem_id)
        if not problem:
            raise NotFoundError("Problem not found", problem_id=problem_id)

        if problem.status != "published":
            return {
                "can_view": False,
                "reason": "This problem has not been published yet.",
                "schedule": None,
                "problem": problem,
            }

        if problem.created_by != reservation.slot.teacher_id:
            raise ValidationError("This problem was not written by the reservation's teacher.")

        details = self.get_schedule(reservation, problem.preview_lead_minutes)
        schedule = details["schedule"]
        if schedule.can_show_problem:
            reason = "Preview is available."
        else:
            reason = f"Preview opens in {format_time_remaining(schedule.time_until_visible)}."

        return {
            "can_view": schedule.can_show_problem,
            "reason": reason,
            "schedule": schedule,
            "queue_position": details["queue_position"],
            "block_start": details["block_start"],
            "preview_lead_minutes": problem.preview_lead_minutes,
            "problem": problem,
        }

    def select_problem(self, caller: CallerContext, reservation_id: int, problem_id: int):
        """Attach a published problem to today's reservation by starting a session"""
        authorize(caller, SELECT_PROBLEM)

        with unit_of_work(self.db, "Select problem"):
            reservation = self.repo.get_reservation(self.db, reservation_id, for_update=True)
            if not reservation or reservation.student_id != caller.account_id:
                raise NotFoundError("Reservation not found", reservation_id=reservation_id)
            if reservation.status != "active":
                raise ConflictError("Only active reservations can select a problem.")
            if reservation.slot.date != self.clock.now().date():
                raise ValidationError("A problem can only be selected on the day of the reservation.")
            if self.repo.get_session_for_reservation(self.db, reservation_id):
                raise ConflictError("A session already exists for this reservation.")

            # Locked so a concurrent archive either sees this session or wins first
            problem = self.repo.get_problem(self.db, problem_id, for_update=True)
            if not problem or problem.status != "published":
                raise NotFoundError("Problem not found or not yet published", problem_id=problem_id)
            if problem.created_by != reservation.slot.teacher_id:
                raise ValidationError("This problem was not written by the reservation's teacher.")

            schedule = self.get_schedule(reservation, problem.preview_lead_minutes)["schedule"]
            if not schedule.can_show_problem:
                raise ConflictError(
                    f"This problem opens in {format_time_remaining(schedule.time_until_visible)}."
                )

            session = self.repo.create_session(
                self.db,
                reservation_id=reservation.id,
                problem_id=problem.id,
                student_id=reservation.student_id,
                teacher_id=reservation.slot.teacher_id,
                status="active",
            )

        self.db.refresh(session)
        logger.info(
            f"Session {session.id} started: reservation {reservation_id} problem {problem_id}"
        )
        return session
