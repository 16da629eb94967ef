"""
Ticket ledger - per-student balance with a hard ceiling.

Grants write an audit row first and then move the balance in a separate
transaction. When the balance move fails the audit row is deleted again
(compensating delete). The weekly bulk issue runs one such unit per student,
collects every outcome and, if any unit failed, compensates the whole batch.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from ...config import WEEKLY_TICKET_COUNT
from ...errors import (
    InsufficientBalanceError,
    NotFoundError,
    PartialFailure,
    SchedulingError,
    ValidationError,
)
from ...models import TicketGrant
from ...permissions import ISSUE_TICKETS, VIEW_OWN_TICKETS, CallerContext, authorize
from ...shared.transactions import unit_of_work
from .repository import TicketRepository

logger = logging.getLogger(__name__)

INDIVIDUAL_GRANT = "individual_grant"
WEEKLY_BULK_ISSUE = "weekly_bulk_issue"


@dataclass
class GrantResult:
    student_id: int
    success: bool
    tickets_applied: int = 0
    balance: Optional[int] = None
    grant_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "success": self.success,
            "tickets_applied": self.tickets_applied,
            "balance": self.balance,
            "grant_id": self.grant_id,
            "error": self.error,
        }


@dataclass
class GrantBatchResult:
    batch_id: str
    quantity: int
    results: list[GrantResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[GrantResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[GrantResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "results": [r.to_dict() for r in self.results],
        }


class TicketLedger:
    """Service layer for ticket grants and consumption"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = TicketRepository()

    def grant_individual(
        self,
        caller: CallerContext,
        student_id: int,
        quantity: int,
        reason: Optional[str] = None,
    ) -> GrantResult:
        """Grant tickets to one student; the balance is clamped at the ceiling"""
        authorize(caller, ISSUE_TICKETS)
        if quantity < 1:
            raise ValidationError("Ticket quantity must be at least 1", quantity=quantity)

        result = self._grant_unit(caller.account_id, student_id, quantity, reason, INDIVIDUAL_GRANT)
        logger.info(
            f"Granted {result.tickets_applied}/{quantity} tickets to student {student_id} "
            f"(balance {result.balance}) by {caller.account_id}"
        )
        return result

    def grant_bulk(
        self,
        caller: CallerContext,
        quantity: int = WEEKLY_TICKET_COUNT,
        reason: Optional[str] = None,
    ) -> GrantBatchResult:
        """
        Weekly issue: every student receives ``quantity`` tickets or nobody does.

        Raises:
            PartialFailure: One or more units failed; the batch was compensated
        """
        authorize(caller, ISSUE_TICKETS)
        if quantity < 1:
            raise ValidationError("Ticket quantity must be at least 1", quantity=quantity)

        student_ids = self.repo.list_student_ids(self.db)
        if not student_ids:
            raise ValidationError("There are no students to issue tickets to")

        batch = GrantBatchResult(batch_id=str(uuid.uuid4()), quantity=quantity)
        logger.info(f"Weekly ticket issue {batch.batch_id}: {len(student_ids)} students x {quantity}")

        for student_id in student_ids:
            try:
                unit = self._grant_unit(
                    caller.account_id,
                    student_id,
                    quantity,
                    reason or "Weekly ticket issue",
                    WEEKLY_BULK_ISSUE,
                    batch_id=batch.batch_id,
                )
            except Exception as e:
                # Any failure fails the unit; the batch is compensated below
                error = e.message if isinstance(e, SchedulingError) else f"{type(e).__name__}: {e}"
                logger.warning(f"Weekly issue {batch.batch_id}: student {student_id} failed: {error}")
                unit = GrantResult(student_id=student_id, success=False, error=error)
            batch.results.append(unit)

        if batch.failed:
            compensation_errors = self._compensate_batch(batch)
            logger.error(
                f"Weekly issue {batch.batch_id} failed for {len(batch.failed)} of "
                f"{len(batch.results)} students; batch rolled back"
            )
            raise PartialFailure(
                "Weekly ticket issue failed and was rolled back, please retry",
                results=[r.to_dict() for r in batch.results],
                batch_id=batch.batch_id,
                failed=len(batch.failed),
                compensation_errors=compensation_errors,
            )

        logger.info(f"Weekly issue {batch.batch_id} completed for {len(batch.results)} students")
        return batch

    def consume(self, student_id: int, quantity: int = 1) -> None:
        """
        Debit tickets inside the caller's open transaction.
        Does not commit; the caller's unit of work owns the boundary.
        """
        if quantity < 1:
            raise ValidationError("Ticket quantity must be at least 1", quantity=quantity)
        updated = self.repo.decrement_balance(self.db, student_id, quantity)
        if updated == 0:
            raise InsufficientBalanceError(
                "Not enough tickets. Please ask an administrator for more.",
                student_id=student_id,
            )

    def refund(self, student_id: int, quantity: int = 1) -> tuple[int, int]:
        """Return tickets inside the caller's open transaction, clamped at the ceiling"""
        return self.repo.increment_balance(self.db, student_id, quantity)

    def get_balance(self, caller: CallerContext, student_id: Optional[int] = None) -> dict:
        """Balance of the caller, or of any student for ticket issuers"""
        if student_id is None:
            if caller.role != "student":
                raise ValidationError("studentId is required")
            student_id = caller.account_id
        if student_id != caller.account_id:
            authorize(caller, ISSUE_TICKETS)
        elif not caller.can(ISSUE_TICKETS):
            authorize(caller, VIEW_OWN_TICKETS)

        student = self.repo.get_student(self.db, student_id)
        if not student:
            raise NotFoundError("Student not found", student_id=student_id)

        return {
            "student_id": student.id,
            "current_tickets": student.current_tickets,
            "recent_grants": self.repo.list_grants(self.db, student.id),
        }

    def _grant_unit(
        self,
        grantor_id: int,
        student_id: int,
        quantity: int,
        reason: Optional[str],
        grant_type: str,
        batch_id: Optional[str] = None,
    ) -> GrantResult:
        if not self.repo.get_student(self.db, student_id):
            raise NotFoundError("Student not found", student_id=student_id)

        grant = TicketGrant(
            student_id=student_id,
            quantity=quantity,
            issued_by=grantor_id,
            type=grant_type,
            reason=reason,
            batch_id=batch_id,
        )
        with unit_of_work(self.db, "Record ticket grant"):
            self.repo.add_grant(self.db, grant)
        grant_id = grant.id

        try:
            with unit_of_work(self.db, "Apply ticket grant"):
                before, after = self.repo.increment_balance(self.db, student_id, quantity)
        except Exception as e:
            compensation_error = self._delete_grant_record(grant_id)
            if compensation_error and isinstance(e, SchedulingError):
                e.details["compensation_error"] = compensation_error
            raise

        return GrantResult(
            student_id=student_id,
            success=True,
            tickets_applied=after - before,
            balance=after,
            grant_id=grant_id,
        )

    def _delete_grant_record(self, grant_id: int) -> Optional[str]:
        try:
            with unit_of_work(self.db, "Delete ticket grant record"):
                self.repo.delete_grant(self.db, grant_id)
        except SchedulingError as e:
            logger.error(f"Compensating delete of ticket grant {grant_id} failed: {e.message}")
            return e.message
        logger.info(f"Ticket grant {grant_id} deleted after failed balance update")
        return None

    def _compensate_batch(self, batch: GrantBatchResult) -> list[str]:
        """Delete every grant row of the batch and revert every applied increment"""
        errors = []
        try:
            with unit_of_work(self.db, "Roll back weekly ticket issue"):
                deleted = self.repo.delete_batch(self.db, batch.batch_id)
                for unit in batch.succeeded:
                    if unit.tickets_applied:
                        self.repo.revert_increment(self.db, unit.student_id, unit.tickets_applied)
            logger.info(
                f"Weekly issue {batch.batch_id}: deleted {deleted} grant records, "
                f"reverted {len(batch.succeeded)} balances"
            )
        except SchedulingError as e:
            affected = [u.student_id for u in batch.succeeded]
            logger.error(
                f"Rollback of weekly issue {batch.batch_id} failed: {e.message}; "
                f"students needing manual review: {affected}"
            )
            errors.append(e.message)
        return errors
