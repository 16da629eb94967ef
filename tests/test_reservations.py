import threading
from datetime import date, datetime

import pytest

from mentorslots.domain.reservations.service import ReservationService
from mentorslots.errors import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    PermissionDeniedError,
    ReservationRuleError,
    SlotFullError,
    ValidationError,
)
from mentorslots.models import Account, MentoringSession, Problem, Reservation, TimeSlot
from mentorslots.permissions import CallerContext

SLOT_DAY = date(2024, 3, 1)


@pytest.fixture
def teacher(make_account):
    return make_account("teacher")


@pytest.fixture
def admin(make_account):
    return make_account("admin")


def fresh(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


class TestBook:
    def test_book_spends_ticket_and_fills_slot(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        slot = make_slot(teacher, "10:00")

        reservation = ReservationService(db, clock).book(caller_for(student), slot.id)

        assert reservation.status == "active"
        assert reservation.student_id == student.id
        assert reservation.created_at == clock.now_utc_naive()
        slot = fresh(db, TimeSlot, slot.id)
        assert slot.current_reservations == 1
        assert slot.is_available is False
        assert slot.is_break is False
        assert fresh(db, Account, student.id).current_tickets == 0

    def test_no_tickets_no_booking(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=0)
        slot = make_slot(teacher, "10:00")

        with pytest.raises(InsufficientBalanceError):
            ReservationService(db, clock).book(caller_for(student), slot.id)

        assert db.query(Reservation).count() == 0
        slot = fresh(db, TimeSlot, slot.id)
        assert slot.current_reservations == 0
        assert slot.is_available is True

    def test_full_slot(self, db, clock, teacher, make_account, make_slot, caller_for):
        first = make_account("student", tickets=2)
        second = make_account("student", tickets=2)
        slot = make_slot(teacher, "10:00")
        service = ReservationService(db, clock)
        service.book(caller_for(first), slot.id)

        with pytest.raises(SlotFullError) as exc_info:
            service.book(caller_for(second), slot.id)

        assert exc_info.value.retryable is False
        assert fresh(db, Account, second.id).current_tickets == 2

    def test_break_slot_is_not_bookable(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        slot = make_slot(teacher, "10:00")
        slot.is_available = False
        db.commit()

        with pytest.raises(SlotFullError):
            ReservationService(db, clock).book(caller_for(student), slot.id)

    def test_missing_slot(self, db, clock, make_account, caller_for):
        student = make_account("student", tickets=1)
        with pytest.raises(NotFoundError):
            ReservationService(db, clock).book(caller_for(student), 999)

    def test_failure_after_insert_rolls_everything_back(
        self, db, clock, teacher, make_account, make_slot, caller_for, monkeypatch
    ):
        from mentorslots.domain.reservations.repository import ReservationRepository

        student = make_account("student", tickets=1)
        slot = make_slot(teacher, "10:00")
        # Simulate losing the race at the last step
        monkeypatch.setattr(ReservationRepository, "occupy_slot", staticmethod(lambda db, slot_id: 0))

        with pytest.raises(SlotFullError):
            ReservationService(db, clock).book(caller_for(student), slot.id)

        assert db.query(Reservation).count() == 0
        assert fresh(db, Account, student.id).current_tickets == 1
        assert fresh(db, TimeSlot, slot.id).current_reservations == 0

    def test_teachers_cannot_book(self, db, clock, teacher, make_slot, caller_for):
        slot = make_slot(teacher, "10:00")
        with pytest.raises(PermissionDeniedError):
            ReservationService(db, clock).book(caller_for(teacher), slot.id)

    def test_admin_books_on_behalf(self, db, clock, admin, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        slot = make_slot(teacher, "10:00")

        reservation = ReservationService(db, clock).book(caller_for(admin), slot.id, student.id)
        assert reservation.student_id == student.id

    def test_student_cannot_book_for_someone_else(
        self, db, clock, teacher, make_account, make_slot, caller_for
    ):
        student = make_account("student", tickets=1)
        other = make_account("student", tickets=1)
        slot = make_slot(teacher, "10:00")
        with pytest.raises(PermissionDeniedError):
            ReservationService(db, clock).book(caller_for(student), slot.id, other.id)


class TestDailyRules:
    def test_daily_limit(self, db, clock, make_account, make_slot, caller_for):
        student = make_account("student", tickets=10)
        teacher_a = make_account("teacher")
        teacher_b = make_account("teacher")
        slots = [
            make_slot(teacher_a, "10:00"),
            make_slot(teacher_a, "10:10"),
            make_slot(teacher_b, "10:20"),
            make_slot(teacher_b, "10:30"),
        ]
        service = ReservationService(db, clock)
        for slot in slots[:3]:
            service.book(caller_for(student), slot.id)

        with pytest.raises(ReservationRuleError) as exc_info:
            service.book(caller_for(student), slots[3].id)
        assert exc_info.value.details["rule"] == "daily_limit_exceeded"
        assert fresh(db, Account, student.id).current_tickets == 7

    def test_teacher_limit(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=10)
        slots = [make_slot(teacher, t) for t in ("10:00", "10:10", "10:20")]
        service = ReservationService(db, clock)
        service.book(caller_for(student), slots[0].id)
        service.book(caller_for(student), slots[1].id)

        with pytest.raises(ReservationRuleError) as exc_info:
            service.book(caller_for(student), slots[2].id)
        assert exc_info.value.details["rule"] == "teacher_limit_exceeded"

    def test_no_mixing_morning_and_afternoon(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=10)
        morning = make_slot(teacher, "10:00")
        evening = make_slot(teacher, "17:00")
        service = ReservationService(db, clock)
        service.book(caller_for(student), morning.id)

        with pytest.raises(ReservationRuleError) as exc_info:
            service.book(caller_for(student), evening.id)
        assert exc_info.value.details["rule"] == "session_crossing"

    def test_other_days_do_not_count(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=10)
        today = make_slot(teacher, "10:00")
        tomorrow = make_slot(teacher, "17:00", slot_date=date(2024, 3, 2))
        service = ReservationService(db, clock)
        service.book(caller_for(student), today.id)
        assert service.book(caller_for(student), tomorrow.id).status == "active"


def test_concurrent_bookings_admit_exactly_one(session_factory, db, clock, teacher, make_account, make_slot):
    contenders = [make_account("student", tickets=1) for _ in range(6)]
    slot = make_slot(teacher, "10:00")
    slot_id = slot.id
    barrier = threading.Barrier(len(contenders))
    outcomes = []
    lock = threading.Lock()

    def attempt(student_id):
        session = session_factory()
        try:
            caller = CallerContext(account_id=student_id, role="student")
            barrier.wait()
            try:
                ReservationService(session, clock).book(caller, slot_id)
                result = "booked"
            except SlotFullError:
                result = "full"
            with lock:
                outcomes.append(result)
        finally:
            session.close()

    threads = [threading.Thread(target=attempt, args=(s.id,)) for s in contenders]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["booked"] + ["full"] * (len(contenders) - 1)
    db.expire_all()
    assert db.get(TimeSlot, slot_id).current_reservations == 1
    assert db.query(Reservation).filter(Reservation.status == "active").count() == 1
    spent = [db.get(Account, s.id).current_tickets for s in contenders]
    assert sorted(spent) == [0] + [1] * (len(contenders) - 1)


class TestCancel:
    def test_cancel_frees_slot_without_refund(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        slot = make_slot(teacher, "10:00")
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), slot.id)

        cancelled = service.cancel(caller_for(student), reservation.id)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        slot = fresh(db, TimeSlot, slot.id)
        assert slot.current_reservations == 0
        assert slot.is_available is True
        assert fresh(db, Account, student.id).current_tickets == 0

    def test_admin_may_refund(self, db, clock, admin, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=10)
        slot = make_slot(teacher, "10:00")
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), slot.id)

        service.cancel(caller_for(admin), reservation.id, refund=True)
        assert fresh(db, Account, student.id).current_tickets == 10

    def test_students_cannot_refund(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        slot = make_slot(teacher, "10:00")
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), slot.id)

        with pytest.raises(PermissionDeniedError):
            service.cancel(caller_for(student), reservation.id, refund=True)
        assert fresh(db, Reservation, reservation.id).status == "active"

    def test_cancel_twice(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        slot = make_slot(teacher, "10:00")
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), slot.id)
        service.cancel(caller_for(student), reservation.id)

        with pytest.raises(ConflictError):
            service.cancel(caller_for(student), reservation.id)
        assert fresh(db, TimeSlot, slot.id).current_reservations == 0

    def test_only_owner_cancels(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        other = make_account("student")
        slot = make_slot(teacher, "10:00")
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), slot.id)

        with pytest.raises(PermissionDeniedError):
            service.cancel(caller_for(other), reservation.id)


NEXT_DAY = date(2024, 3, 2)


class TestChangeSlot:
    def test_move_swaps_slots_and_keeps_ticket_spent(
        self, db, clock, teacher, make_account, make_slot, caller_for
    ):
        student = make_account("student", tickets=1)
        old = make_slot(teacher, "10:00", slot_date=NEXT_DAY)
        new = make_slot(teacher, "10:10", slot_date=NEXT_DAY)
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), old.id)

        moved = service.change_slot(caller_for(student), reservation.id, new.id)

        assert moved.id == reservation.id
        assert moved.slot_id == new.id
        assert moved.slot.time_slot == "10:10"
        old, new = fresh(db, TimeSlot, old.id), fresh(db, TimeSlot, new.id)
        assert (old.current_reservations, old.is_available) == (0, True)
        assert (new.current_reservations, new.is_available) == (1, False)
        assert fresh(db, Account, student.id).current_tickets == 0

    def test_moved_reservation_is_not_counted_against_itself(
        self, db, clock, teacher, make_account, make_slot, caller_for
    ):
        student = make_account("student", tickets=10)
        slots = [make_slot(teacher, t, slot_date=NEXT_DAY) for t in ("10:00", "10:10", "10:20")]
        service = ReservationService(db, clock)
        service.book(caller_for(student), slots[0].id)
        second = service.book(caller_for(student), slots[1].id)

        # Two with this teacher already; moving one of them stays within the limit
        moved = service.change_slot(caller_for(student), second.id, slots[2].id)
        assert moved.slot_id == slots[2].id

    def test_rules_still_apply_to_the_other_reservations(
        self, db, clock, teacher, make_account, make_slot, caller_for
    ):
        student = make_account("student", tickets=10)
        morning = [make_slot(teacher, t, slot_date=NEXT_DAY) for t in ("10:00", "10:10")]
        evening = make_slot(teacher, "17:00", slot_date=NEXT_DAY)
        service = ReservationService(db, clock)
        first = service.book(caller_for(student), morning[0].id)
        service.book(caller_for(student), morning[1].id)

        with pytest.raises(ReservationRuleError) as exc_info:
            service.change_slot(caller_for(student), first.id, evening.id)
        assert exc_info.value.details["rule"] == "session_crossing"
        assert fresh(db, Reservation, first.id).slot_id == morning[0].id

    def test_full_target_slot(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        rival = make_account("student", tickets=1)
        old = make_slot(teacher, "10:00", slot_date=NEXT_DAY)
        taken = make_slot(teacher, "10:10", slot_date=NEXT_DAY)
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), old.id)
        service.book(caller_for(rival), taken.id)

        with pytest.raises(SlotFullError):
            service.change_slot(caller_for(student), reservation.id, taken.id)

        assert fresh(db, Reservation, reservation.id).slot_id == old.id
        assert fresh(db, TimeSlot, old.id).current_reservations == 1
        assert fresh(db, TimeSlot, taken.id).current_reservations == 1

    def test_changes_close_at_midnight_before_the_reservation(
        self, db, clock, teacher, make_account, make_slot, caller_for
    ):
        student = make_account("student", tickets=1)
        slots = [make_slot(teacher, t, slot_date=NEXT_DAY) for t in ("10:00", "10:10", "10:20")]
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), slots[0].id)

        clock.set(datetime(2024, 3, 1, 23, 59))
        service.change_slot(caller_for(student), reservation.id, slots[1].id)

        clock.set(datetime(2024, 3, 2, 0, 0))
        with pytest.raises(ValidationError):
            service.change_slot(caller_for(student), reservation.id, slots[2].id)
        assert fresh(db, Reservation, reservation.id).slot_id == slots[1].id

    def test_only_owner_moves(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        other = make_account("student")
        old = make_slot(teacher, "10:00", slot_date=NEXT_DAY)
        new = make_slot(teacher, "10:10", slot_date=NEXT_DAY)
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), old.id)

        with pytest.raises(PermissionDeniedError):
            service.change_slot(caller_for(other), reservation.id, new.id)


class TestListing:
    def test_students_see_only_their_reservations(self, db, clock, teacher, make_account, make_slot, caller_for):
        first = make_account("student", tickets=1)
        second = make_account("student", tickets=1)
        service = ReservationService(db, clock)
        service.book(caller_for(first), make_slot(teacher, "10:00").id)
        service.book(caller_for(second), make_slot(teacher, "10:10").id)

        assert [r.student_id for r in service.list_reservations(caller_for(first))] == [first.id]
        assert len(service.list_reservations(caller_for(teacher))) == 2

    def test_detail_access(self, db, clock, teacher, make_account, make_slot, caller_for):
        student = make_account("student", tickets=1)
        other = make_account("student")
        service = ReservationService(db, clock)
        reservation = service.book(caller_for(student), make_slot(teacher, "10:00").id)

        assert service.get_reservation(caller_for(teacher), reservation.id).id == reservation.id
        with pytest.raises(PermissionDeniedError):
            service.get_reservation(caller_for(other), reservation.id)


class TestQueueAndProblems:
    @pytest.fixture
    def queued(self, db, clock, teacher, make_account, make_slot, caller_for):
        """Three students booked into block 1 in creation order"""
        service = ReservationService(db, clock)
        reservations = []
        for minute, time_slot in ((0, "09:00"), (1, "09:10"), (2, "09:20")):
            student = make_account("student", tickets=1)
            clock.set(datetime(2024, 2, 28, 12, minute))
            reservations.append(service.book(caller_for(student), make_slot(teacher, time_slot).id))
        return reservations

    @pytest.fixture
    def problem(self, db, teacher):
        problem = Problem(
            title="Two pointers",
            content="Find the pair",
            status="published",
            preview_lead_time=30,
            preview_lead_unit="minutes",
            created_by=teacher.id,
        )
        db.add(problem)
        db.commit()
        db.refresh(problem)
        return problem

    def test_queue_position_follows_creation_order(self, db, clock, queued):
        service = ReservationService(db, clock)
        positions = [service.get_queue_position(fresh(db, Reservation, r.id)) for r in queued]
        assert positions == [1, 2, 3]

    def test_cancellation_moves_queue_forward(self, db, clock, queued, make_account, caller_for):
        service = ReservationService(db, clock)
        admin = make_account("admin")
        service.cancel(caller_for(admin), queued[0].id)
        assert service.get_queue_position(fresh(db, Reservation, queued[2].id)) == 2

    def test_preview_opens_at_visible_from(self, db, clock, queued, problem, make_account):
        reservation = fresh(db, Reservation, queued[2].id)
        student = CallerContext(account_id=reservation.student_id, role="student")
        service = ReservationService(db, clock)

        clock.set(datetime(2024, 3, 1, 8, 49))
        closed = service.check_problem_availability(student, reservation.id, problem.id)
        assert closed["can_view"] is False
        assert closed["queue_position"] == 3
        assert closed["reason"] == "Preview opens in 1m."

        clock.set(datetime(2024, 3, 1, 8, 50))
        opened = service.check_problem_availability(student, reservation.id, problem.id)
        assert opened["can_view"] is True
        assert opened["schedule"].scheduled_start_at.hour == 9
        assert opened["schedule"].scheduled_start_at.minute == 20

    def test_unpublished_problem_is_not_viewable(self, db, clock, queued, problem):
        problem.status = "draft"
        db.commit()
        reservation = fresh(db, Reservation, queued[0].id)
        student = CallerContext(account_id=reservation.student_id, role="student")

        result = ReservationService(db, clock).check_problem_availability(
            student, reservation.id, problem.id
        )
        assert result["can_view"] is False
        assert result["schedule"] is None

    def test_select_problem_starts_one_session(self, db, clock, queued, problem):
        reservation = fresh(db, Reservation, queued[2].id)
        student = CallerContext(account_id=reservation.student_id, role="student")
        service = ReservationService(db, clock)

        clock.set(datetime(2024, 3, 1, 8, 49))
        with pytest.raises(ConflictError):
            service.select_problem(student, reservation.id, problem.id)

        clock.set(datetime(2024, 3, 1, 8, 50))
        session = service.select_problem(student, reservation.id, problem.id)
        assert session.problem_id == problem.id
        assert session.teacher_id == problem.created_by

        with pytest.raises(ConflictError):
            service.select_problem(student, reservation.id, problem.id)
        assert db.query(MentoringSession).count() == 1

    def test_select_problem_only_on_reservation_day(self, db, clock, queued, problem):
        from mentorslots.errors import ValidationError

        reservation = fresh(db, Reservation, queued[0].id)
        student = CallerContext(account_id=reservation.student_id, role="student")
        clock.set(datetime(2024, 2, 29, 9, 0))
        with pytest.raises(ValidationError):
            ReservationService(db, clock).select_problem(student, reservation.id, problem.id)
