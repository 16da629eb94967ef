"""Slot repository - Database operations for reservation slots"""

from datetime import date
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Account, TimeSlot


class SlotRepository:
    """Repository for time slot database operations"""

    @staticmethod
    def get_teacher(db: Session, teacher_id: int, for_update: bool = False) -> Optional[Account]:
        """Get an account only if it has the teacher role"""
        query = db.query(Account).filter(Account.id == teacher_id, Account.role == "teacher")
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_existing_time_labels(db: Session, slot_date: date, teacher_id: int) -> set[str]:
        """Time labels that already have a slot for this teacher and day"""
        rows = (
            db.query(TimeSlot.time_slot)
            .filter(TimeSlot.date == slot_date, TimeSlot.teacher_id == teacher_id)
            .all()
        )
        return {row[0] for row in rows}

    @staticmethod
    def add_slots(db: Session, slots: list[TimeSlot]) -> None:
        """Stage new slots and flush so unique-key conflicts surface now"""
        db.add_all(slots)
        db.flush()

    @staticmethod
    def get_slot(
        db: Session, slot_date: date, time_slot: str, teacher_id: int, for_update: bool = False
    ) -> Optional[TimeSlot]:
        """Get a slot by its (date, time, teacher) identity"""
        query = db.query(TimeSlot).filter(
            TimeSlot.date == slot_date,
            TimeSlot.time_slot == time_slot,
            TimeSlot.teacher_id == teacher_id,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_slot_by_id(db: Session, slot_id: int, for_update: bool = False) -> Optional[TimeSlot]:
        query = db.query(TimeSlot).filter(TimeSlot.id == slot_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def count_breaks(db: Session, teacher_id: int, slot_date: date) -> int:
        """Break slots are unavailable slots that carry no reservation"""
        return (
            db.query(func.count(TimeSlot.id))
            .filter(
                TimeSlot.teacher_id == teacher_id,
                TimeSlot.date == slot_date,
                TimeSlot.is_available.is_(False),
                TimeSlot.current_reservations == 0,
            )
            .scalar()
        )

    @staticmethod
    def list_slots(
        db: Session,
        slot_date: Optional[date] = None,
        teacher_id: Optional[int] = None,
        available_only: bool = False,
    ) -> list[TimeSlot]:
        query = db.query(TimeSlot)
        if slot_date:
            query = query.filter(TimeSlot.date == slot_date)
        if teacher_id:
            query = query.filter(TimeSlot.teacher_id == teacher_id)
        if available_only:
            query = query.filter(TimeSlot.is_available.is_(True))
        return query.order_by(
            TimeSlot.date.asc(), TimeSlot.session_period.asc(), TimeSlot.time_slot.asc()
        ).all()

    @staticmethod
    def delete_slot(db: Session, slot: TimeSlot) -> None:
        db.delete(slot)
