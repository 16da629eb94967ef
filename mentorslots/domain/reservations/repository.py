"""Reservation repository - Database operations for reservations"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Account, MentoringSession, Problem, Reservation, TimeSlot


class ReservationRepository:
    """Repository for reservation database operations"""

    @staticmethod
    def get_student(db: Session, student_id: int, for_update: bool = False) -> Optional[Account]:
        query = db.query(Account).filter(Account.id == student_id, Account.role == "student")
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_reservation(
        db: Session, reservation_id: int, for_update: bool = False
    ) -> Optional[Reservation]:
        query = db.query(Reservation).filter(Reservation.id == reservation_id)
        if for_update:
            query = query.with_for_update()
        else:
            query = query.options(joinedload(Reservation.slot))
        return query.first()

    @staticmethod
    def get_active_for_day(db: Session, student_id: int, slot_date: date) -> list[Reservation]:
        """Active reservations of a student on one day, with their slots"""
        return (
            db.query(Reservation)
            .join(TimeSlot, Reservation.slot_id == TimeSlot.id)
            .options(joinedload(Reservation.slot))
            .filter(
                Reservation.student_id == student_id,
                Reservation.status == "active",
                TimeSlot.date == slot_date,
            )
            .all()
        )

    @staticmethod
    def create_reservation(db: Session, student_id: int, slot_id: int, created_at) -> Reservation:
        reservation = Reservation(
            student_id=student_id, slot_id=slot_id, status="active", created_at=created_at
        )
        db.add(reservation)
        db.flush()
        return reservation

    @staticmethod
    def occupy_slot(db: Session, slot_id: int) -> int:
        """
        Take one capacity unit if one is free. Returns rows updated;
        zero means another booking got there first.
        """
        updated = (
            db.query(TimeSlot)
            .filter(
                TimeSlot.id == slot_id,
                TimeSlot.is_available.is_(True),
                TimeSlot.current_reservations < TimeSlot.max_capacity,
            )
            .update(
                {TimeSlot.current_reservations: TimeSlot.current_reservations + 1},
                synchronize_session=False,
            )
        )
        if updated:
            db.query(TimeSlot).filter(
                TimeSlot.id == slot_id,
                TimeSlot.current_reservations >= TimeSlot.max_capacity,
            ).update({TimeSlot.is_available: False}, synchronize_session=False)
        return updated

    @staticmethod
    def release_slot(db: Session, slot_id: int) -> int:
        return (
            db.query(TimeSlot)
            .filter(TimeSlot.id == slot_id, TimeSlot.current_reservations > 0)
            .update(
                {
                    TimeSlot.current_reservations: TimeSlot.current_reservations - 1,
                    TimeSlot.is_available: True,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def list_reservations(
        db: Session,
        student_id: Optional[int] = None,
        slot_date: Optional[date] = None,
        teacher_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Reservation]:
        query = (
            db.query(Reservation)
            .join(TimeSlot, Reservation.slot_id == TimeSlot.id)
            .options(joinedload(Reservation.slot), joinedload(Reservation.student))
        )
        if student_id:
            query = query.filter(Reservation.student_id == student_id)
        if slot_date:
            query = query.filter(TimeSlot.date == slot_date)
        if teacher_id:
            query = query.filter(TimeSlot.teacher_id == teacher_id)
        if status:
            query = query.filter(Reservation.status == status)
        return query.order_by(
            TimeSlot.date.desc(), TimeSlot.time_slot.asc(), Reservation.created_at.asc()
        ).all()

    @staticmethod
    def get_block_queue(db: Session, slot: TimeSlot) -> list[int]:
        """Ids of active reservations sharing the slot's block, in queue order"""
        rows = (
            db.query(Reservation.id)
            .join(TimeSlot, Reservation.slot_id == TimeSlot.id)
            .filter(
                TimeSlot.date == slot.date,
                TimeSlot.teacher_id == slot.teacher_id,
                TimeSlot.block == slot.block,
                Reservation.status == "active",
            )
            .order_by(Reservation.created_at.asc(), Reservation.id.asc())
            .all()
        )
        return [row[0] for row in rows]

    @staticmethod
    def get_problem(db: Session, problem_id: int, for_update: bool = False) -> Optional[Problem]:
        query = db.query(Problem).filter(Problem.id == problem_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_session_for_reservation(db: Session, reservation_id: int) -> Optional[MentoringSession]:
        return (
            db.query(MentoringSession)
            .filter(MentoringSession.reservation_id == reservation_id)
            .first()
        )

    @staticmethod
    def create_session(db: Session, **session_data) -> MentoringSession:
        session = MentoringSession(**session_data)
        db.add(session)
        db.flush()
        return session
