"""Slot service - Template expansion and break management"""

import logging
from datetime import date
from typing import Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import (
    DEFAULT_AM_END,
    DEFAULT_AM_START,
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_PM_END,
    DEFAULT_PM_START,
    MAX_BREAKS_PER_DAY,
    SLOT_CAPACITY,
)
from ...errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    ValidationError,
)
from ...models import Account, TimeSlot
from ...permissions import MANAGE_OWN_SLOTS, MANAGE_RESERVATION_SLOTS, CallerContext
from ...services.publication_scheduler import get_block_for_time
from ...shared.transactions import unit_of_work
from ...shared.validators import format_time_label, parse_time_label
from .repository import SlotRepository

logger = logging.getLogger(__name__)

# A window whose start lies after its end produces no slots
DISABLED_WINDOW = ("23:59", "23:58")


def iter_window(start: str, end: str, interval_minutes: int) -> Iterator[str]:
    """Interval-aligned time labels from start through end inclusive"""
    current = parse_time_label(start)
    last = parse_time_label(end)
    while current <= last:
        yield format_time_label(current)
        current += interval_minutes


def expand_template(
    am_start: str,
    am_end: str,
    pm_start: str,
    pm_end: str,
    interval_minutes: int,
    session_only: Optional[str] = None,
) -> list[tuple[str, str]]:
    """
    Expand the AM/PM windows into (time_label, session_period) pairs.

    ``session_only`` suppresses the other half by collapsing its window
    (start after end) so that both halves go through the same code path.
    """
    if interval_minutes < 1:
        raise ValidationError("Interval must be a positive number of minutes")

    if session_only == "AM":
        pm_start, pm_end = DISABLED_WINDOW
    elif session_only == "PM":
        am_start, am_end = DISABLED_WINDOW
    elif session_only is not None:
        raise ValidationError("sessionOnly must be 'AM', 'PM' or omitted")

    try:
        ticks = [(label, "AM") for label in iter_window(am_start, am_end, interval_minutes)]
        ticks += [(label, "PM") for label in iter_window(pm_start, pm_end, interval_minutes)]
    except ValueError as e:
        raise ValidationError(str(e)) from e

    seen = set()
    unique = []
    for label, period in ticks:
        if label not in seen:
            seen.add(label)
            unique.append((label, period))
    return unique


class SlotService:
    """Service layer for slot generation and availability"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SlotRepository()

    def _authorize_for_teacher(self, caller: CallerContext, teacher_id: int) -> None:
        """Admins manage every teacher's slots, teachers only their own"""
        if caller.can(MANAGE_RESERVATION_SLOTS):
            return
        if caller.can(MANAGE_OWN_SLOTS) and caller.account_id == teacher_id:
            return
        logger.warning(
            f"Account {caller.account_id} ({caller.role}) may not manage slots of teacher {teacher_id}"
        )
        raise PermissionDeniedError("You can only manage your own time slots.")

    def _require_teacher(self, teacher_id: int, for_update: bool = False) -> Account:
        teacher = self.repo.get_teacher(self.db, teacher_id, for_update=for_update)
        if not teacher:
            raise NotFoundError("Teacher not found", teacher_id=teacher_id)
        return teacher

    def generate_time_slots(
        self,
        caller: CallerContext,
        slot_date: date,
        teacher_id: int,
        am_start: str = DEFAULT_AM_START,
        am_end: str = DEFAULT_AM_END,
        pm_start: str = DEFAULT_PM_START,
        pm_end: str = DEFAULT_PM_END,
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
        session_only: Optional[str] = None,
    ) -> dict:
        """
        Create one slot per interval tick in the active window(s).
        Existing (date, time, teacher) triples are skipped, never duplicated.
        """
        self._authorize_for_teacher(caller, teacher_id)
        ticks = expand_template(am_start, am_end, pm_start, pm_end, interval_minutes, session_only)
        teacher = self._require_teacher(teacher_id)

        created, skipped = self._insert_missing(slot_date, teacher_id, ticks)

        duplicate = created == 0 and len(skipped) > 0
        session_text = f"{session_only} " if session_only else ""
        if duplicate:
            logger.info(
                f"Slots for teacher {teacher_id} on {slot_date} already exist - nothing created"
            )
            message = f"{session_text}time slots for {teacher.name} on {slot_date} already exist."
        else:
            logger.info(
                f"Generated {created} slots for teacher {teacher_id} on {slot_date} "
                f"({len(skipped)} already existed)"
            )
            message = f"{session_text}time slots for {teacher.name} on {slot_date} were created."

        return {
            "success": not duplicate,
            "message": message.strip().capitalize(),
            "slots_created": None if duplicate else created,
            "skipped": skipped,
            "duplicate": duplicate,
            "teacher": teacher.name,
            "date": slot_date,
        }

    def _insert_missing(
        self, slot_date: date, teacher_id: int, ticks: list[tuple[str, str]]
    ) -> tuple[int, list[str]]:
        # A concurrent expander may insert the same triples between our read and
        # our flush; the unique constraint rejects the batch and we re-read once.
        for attempt in range(2):
            try:
                with unit_of_work(self.db, "Generate time slots"):
                    existing = self.repo.get_existing_time_labels(self.db, slot_date, teacher_id)
                    new_slots = [
                        TimeSlot(
                            date=slot_date,
                            time_slot=label,
                            session_period=period,
                            block=get_block_for_time(label),
                            teacher_id=teacher_id,
                            max_capacity=SLOT_CAPACITY,
                            current_reservations=0,
                            is_available=True,
                        )
                        for label, period in ticks
                        if label not in existing
                    ]
                    skipped = [label for label, _ in ticks if label in existing]
                    if new_slots:
                        self.repo.add_slots(self.db, new_slots)
                return len(new_slots), skipped
            except ConflictError as e:
                if attempt == 1 or not isinstance(e.__cause__, IntegrityError):
                    raise
                logger.warning(
                    f"Concurrent slot generation detected for teacher {teacher_id} on {slot_date}, retrying"
                )
        return 0, []

    def create_single_slot(
        self,
        caller: CallerContext,
        slot_date: date,
        time_slot: str,
        teacher_id: int,
        session_period: Optional[str] = None,
    ) -> TimeSlot:
        self._authorize_for_teacher(caller, teacher_id)
        self._require_teacher(teacher_id)

        minutes = parse_time_label(time_slot)
        period = (session_period or ("AM" if minutes < parse_time_label(DEFAULT_PM_START) else "PM")).upper()
        if period not in {"AM", "PM"}:
            raise ValidationError("sessionPeriod must be 'AM' or 'PM'")

        with unit_of_work(self.db, "Create time slot"):
            if self.repo.get_slot(self.db, slot_date, time_slot, teacher_id):
                raise ConflictError("This time slot already exists.")
            slot = TimeSlot(
                date=slot_date,
                time_slot=time_slot,
                session_period=period,
                block=get_block_for_time(time_slot),
                teacher_id=teacher_id,
                max_capacity=SLOT_CAPACITY,
                current_reservations=0,
                is_available=True,
            )
            self.repo.add_slots(self.db, [slot])

        self.db.refresh(slot)
        logger.info(f"Slot {slot.id} created: {slot_date} {time_slot} teacher {teacher_id}")
        return slot

    def set_break(
        self,
        caller: CallerContext,
        slot_date: date,
        time_slot: str,
        teacher_id: int,
        is_break: bool,
    ) -> TimeSlot:
        """
        Flip a slot between bookable and break.

        Raises ConflictError when the slot carries a reservation and
        QuotaExceededError when the teacher already has the maximum number of
        breaks that day. Neither failure mutates the slot.
        """
        self._authorize_for_teacher(caller, teacher_id)

        with unit_of_work(self.db, "Set break time"):
            # Lock the teacher row so concurrent break requests count breaks serially
            self._require_teacher(teacher_id, for_update=True)
            slot = self.repo.get_slot(self.db, slot_date, time_slot, teacher_id, for_update=True)
            if not slot:
                raise NotFoundError(
                    "Time slot not found", date=str(slot_date), time_slot=time_slot
                )

            if is_break:
                if slot.current_reservations > 0:
                    raise ConflictError("A slot with reservations cannot be set as a break.")
                if not slot.is_break:
                    breaks = self.repo.count_breaks(self.db, teacher_id, slot_date)
                    if breaks >= MAX_BREAKS_PER_DAY:
                        raise QuotaExceededError(
                            f"At most {MAX_BREAKS_PER_DAY} break slots are allowed per day.",
                            current_breaks=breaks,
                        )
                    slot.is_available = False
            else:
                if slot.current_reservations >= slot.max_capacity:
                    raise ConflictError("A fully booked slot cannot be released as available.")
                slot.is_available = True

        self.db.refresh(slot)
        logger.info(
            f"Slot {slot.id} ({slot_date} {time_slot}) set to {'break' if is_break else 'available'}"
        )
        return slot

    def remove_time_slot(
        self, caller: CallerContext, slot_date: date, time_slot: str, teacher_id: int
    ) -> dict:
        """Delete a slot; slots that carry reservations are never deleted"""
        self._authorize_for_teacher(caller, teacher_id)

        with unit_of_work(self.db, "Remove time slot"):
            slot = self.repo.get_slot(self.db, slot_date, time_slot, teacher_id, for_update=True)
            if not slot:
                raise NotFoundError("Time slot not found", date=str(slot_date), time_slot=time_slot)
            if slot.current_reservations > 0 or slot.reservations:
                raise ConflictError("A slot with reservations cannot be deleted.")
            self.repo.delete_slot(self.db, slot)

        logger.info(f"Slot {slot_date} {time_slot} of teacher {teacher_id} removed")
        return {"message": "Time slot deleted"}

    def list_slots(
        self,
        slot_date: Optional[date] = None,
        teacher_id: Optional[int] = None,
        available_only: bool = True,
    ) -> list[TimeSlot]:
        return self.repo.list_slots(self.db, slot_date, teacher_id, available_only)
