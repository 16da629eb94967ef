from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .config import DEFAULT_PREVIEW_LEAD_TIME, DEFAULT_PREVIEW_LEAD_UNIT, MAX_TICKETS, SLOT_CAPACITY
from .database import Base


class Account(Base):
    """Mirror of an identity-provider account; holds the ticket balance for students"""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(
            f"current_tickets >= 0 AND current_tickets <= {MAX_TICKETS}",
            name="ck_accounts_ticket_range",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    class_name = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, index=True)  # student, teacher, admin
    current_tickets = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    reservations = relationship("Reservation", back_populates="student")
    slots = relationship("TimeSlot", back_populates="teacher")


class TimeSlot(Base):
    __tablename__ = "reservation_slots"
    __table_args__ = (
        UniqueConstraint("date", "time_slot", "teacher_id", name="uq_slot_date_time_teacher"),
        CheckConstraint(
            "current_reservations >= 0 AND current_reservations <= max_capacity",
            name="ck_slot_capacity",
        ),
        Index("idx_slots_teacher_date", "teacher_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False)
    time_slot = Column(String(5), nullable=False)  # HH:MM
    session_period = Column(String(2), nullable=False)  # AM, PM
    block = Column(Integer, nullable=False)  # Teaching period 1..10
    teacher_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    max_capacity = Column(Integer, default=SLOT_CAPACITY, nullable=False)
    current_reservations = Column(Integer, default=0, nullable=False)
    # False means either a break (no reservations) or booked out
    is_available = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    teacher = relationship("Account", back_populates="slots")
    reservations = relationship("Reservation", back_populates="slot")

    @property
    def is_break(self) -> bool:
        return not self.is_available and self.current_reservations == 0


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        Index("idx_reservations_slot_status", "slot_id", "status"),
        Index("idx_reservations_student_status", "student_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    slot_id = Column(Integer, ForeignKey("reservation_slots.id"), nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active, cancelled
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    cancelled_at = Column(DateTime, nullable=True)

    student = relationship("Account", back_populates="reservations")
    slot = relationship("TimeSlot", back_populates="reservations")
    sessions = relationship("MentoringSession", back_populates="reservation")


class TicketGrant(Base):
    """Audit row for each ticket grant; rows are only ever inserted or compensated away"""

    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    issued_by = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    issued_at = Column(DateTime, server_default=func.now(), nullable=False)
    type = Column(String(30), nullable=False)  # individual_grant, weekly_bulk_issue
    reason = Column(Text, nullable=True)
    batch_id = Column(String(36), nullable=True, index=True)


class Problem(Base):
    __tablename__ = "problems"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    # Status workflow: draft → published → archived (draft → archived also allowed)
    status = Column(String(20), default="draft", nullable=False, index=True)
    scheduled_publish_at = Column(DateTime, nullable=True)  # naive UTC
    preview_lead_time = Column(Integer, default=DEFAULT_PREVIEW_LEAD_TIME, nullable=False)
    preview_lead_unit = Column(String(10), default=DEFAULT_PREVIEW_LEAD_UNIT, nullable=False)
    created_by = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    sessions = relationship("MentoringSession", back_populates="problem")
    events = relationship("ProblemEvent", back_populates="problem")

    @property
    def preview_lead_minutes(self) -> int:
        lead = self.preview_lead_time if self.preview_lead_time is not None else 0
        if (self.preview_lead_unit or DEFAULT_PREVIEW_LEAD_UNIT) == "hours":
            return lead * 60
        return lead


class ProblemEvent(Base):
    """Status transition audit trail for problems"""

    __tablename__ = "problem_events"

    id = Column(Integer, primary_key=True, index=True)
    problem_id = Column(Integer, ForeignKey("problems.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    actor = Column(String(50), nullable=False)  # account id or "auto_publish"
    created_at = Column(DateTime, server_default=func.now())

    problem = relationship("Problem", back_populates="events")


class MentoringSession(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, unique=True)
    problem_id = Column(Integer, ForeignKey("problems.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    teacher_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    # Status workflow: active → feedback_pending → completed
    status = Column(String(20), default="active", nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    reservation = relationship("Reservation", back_populates="sessions")
    problem = relationship("Problem", back_populates="sessions")
