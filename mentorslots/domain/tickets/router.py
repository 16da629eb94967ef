"""Ticket router - FastAPI endpoints for grants and balances"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_caller
from ...database import get_db
from ...permissions import CallerContext
from .schemas import (
    BulkGrantRequest,
    BulkGrantResponse,
    GrantResultResponse,
    IndividualGrantRequest,
    TicketBalanceResponse,
    TicketGrantResponse,
)
from .service import GrantResult, TicketLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["Tickets"])


def get_ticket_ledger(db: Session = Depends(get_db)) -> TicketLedger:
    """Dependency injection for TicketLedger"""
    return TicketLedger(db)


def to_result_response(result: GrantResult) -> GrantResultResponse:
    return GrantResultResponse(
        studentId=result.student_id,
        success=result.success,
        ticketsApplied=result.tickets_applied,
        balance=result.balance,
        grantId=result.grant_id,
        error=result.error,
    )


@router.post("/grant", response_model=GrantResultResponse)
async def grant_tickets(
    data: IndividualGrantRequest,
    caller: CallerContext = Depends(get_current_caller),
    ledger: TicketLedger = Depends(get_ticket_ledger),
):
    """Grant tickets to a single student (admin)"""
    result = ledger.grant_individual(caller, data.studentId, data.quantity, data.reason)
    return to_result_response(result)


@router.post("/weekly-issue", response_model=BulkGrantResponse)
async def issue_weekly_tickets(
    data: BulkGrantRequest,
    caller: CallerContext = Depends(get_current_caller),
    ledger: TicketLedger = Depends(get_ticket_ledger),
):
    """Issue tickets to every student; all-or-nothing"""
    batch = ledger.grant_bulk(caller, data.quantity, data.reason)
    return BulkGrantResponse(
        success=True,
        batchId=batch.batch_id,
        quantity=batch.quantity,
        studentsUpdated=len(batch.succeeded),
        results=[to_result_response(r) for r in batch.results],
    )


@router.get("/balance", response_model=TicketBalanceResponse)
async def get_ticket_balance(
    student_id: Optional[int] = Query(None, alias="studentId"),
    caller: CallerContext = Depends(get_current_caller),
    ledger: TicketLedger = Depends(get_ticket_ledger),
):
    """Current balance of the caller, or of any student for administrators"""
    balance = ledger.get_balance(caller, student_id)
    return TicketBalanceResponse(
        studentId=balance["student_id"],
        currentTickets=balance["current_tickets"],
        recentGrants=[
            TicketGrantResponse(
                id=g.id,
                quantity=g.quantity,
                type=g.type,
                reason=g.reason,
                issuedBy=g.issued_by,
                issuedAt=g.issued_at,
            )
            for g in balance["recent_grants"]
        ],
    )
