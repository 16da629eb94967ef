"""Ticket repository - Balance mutations and grant records"""

from typing import Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from ...config import MAX_TICKETS
from ...models import Account, TicketGrant


class TicketRepository:
    """Repository for ticket balance and grant database operations"""

    @staticmethod
    def get_student(db: Session, student_id: int, for_update: bool = False) -> Optional[Account]:
        query = db.query(Account).filter(Account.id == student_id, Account.role == "student")
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def list_student_ids(db: Session) -> list[int]:
        rows = db.query(Account.id).filter(Account.role == "student").order_by(Account.id).all()
        return [row[0] for row in rows]

    @staticmethod
    def get_balance(db: Session, student_id: int) -> Optional[int]:
        row = db.query(Account.current_tickets).filter(Account.id == student_id).first()
        return row[0] if row else None

    @staticmethod
    def add_grant(db: Session, grant: TicketGrant) -> TicketGrant:
        db.add(grant)
        db.flush()
        return grant

    @staticmethod
    def increment_balance(db: Session, student_id: int, quantity: int) -> tuple[int, int]:
        """
        Raise a balance by ``quantity`` clamped at MAX_TICKETS.
        Returns (balance_before, balance_after); the row is locked first.
        """
        before = (
            db.query(Account.current_tickets)
            .filter(Account.id == student_id)
            .with_for_update()
            .scalar()
        )
        db.query(Account).filter(Account.id == student_id).update(
            {
                Account.current_tickets: case(
                    (Account.current_tickets + quantity > MAX_TICKETS, MAX_TICKETS),
                    else_=Account.current_tickets + quantity,
                )
            },
            synchronize_session=False,
        )
        after = db.query(Account.current_tickets).filter(Account.id == student_id).scalar()
        return before, after

    @staticmethod
    def decrement_balance(db: Session, student_id: int, quantity: int) -> int:
        """Conditional debit; returns the number of rows updated (0 = insufficient)"""
        return (
            db.query(Account)
            .filter(Account.id == student_id, Account.current_tickets >= quantity)
            .update(
                {Account.current_tickets: Account.current_tickets - quantity},
                synchronize_session=False,
            )
        )

    @staticmethod
    def revert_increment(db: Session, student_id: int, quantity: int) -> int:
        """Take back a previously applied increment, never below zero"""
        return (
            db.query(Account)
            .filter(Account.id == student_id)
            .update(
                {
                    Account.current_tickets: case(
                        (Account.current_tickets - quantity < 0, 0),
                        else_=Account.current_tickets - quantity,
                    )
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def delete_grant(db: Session, grant_id: int) -> int:
        return (
            db.query(TicketGrant)
            .filter(TicketGrant.id == grant_id)
            .delete(synchronize_session=False)
        )

    @staticmethod
    def delete_batch(db: Session, batch_id: str) -> int:
        return (
            db.query(TicketGrant)
            .filter(TicketGrant.batch_id == batch_id)
            .delete(synchronize_session=False)
        )

    @staticmethod
    def list_grants(db: Session, student_id: int, limit: int = 20) -> list[TicketGrant]:
        return (
            db.query(TicketGrant)
            .filter(TicketGrant.student_id == student_id)
            .order_by(TicketGrant.issued_at.desc(), TicketGrant.id.desc())
            .limit(limit)
            .all()
        )
