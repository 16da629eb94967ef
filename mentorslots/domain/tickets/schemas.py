"""Ticket domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...config import MAX_TICKETS, WEEKLY_TICKET_COUNT


class IndividualGrantRequest(BaseModel):
    """Schema for granting tickets to one student"""

    studentId: int
    quantity: int
    reason: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: int) -> int:
        if v < 1 or v > MAX_TICKETS:
            raise ValueError(f"quantity must be between 1 and {MAX_TICKETS}")
        return v

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
            return v or None
        return v


class BulkGrantRequest(BaseModel):
    """Schema for the weekly issue to every student"""

    quantity: int = WEEKLY_TICKET_COUNT
    reason: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: int) -> int:
        if v < 1 or v > MAX_TICKETS:
            raise ValueError(f"quantity must be between 1 and {MAX_TICKETS}")
        return v


class GrantResultResponse(BaseModel):
    studentId: int
    success: bool
    ticketsApplied: int = 0
    balance: Optional[int] = None
    grantId: Optional[int] = None
    error: Optional[str] = None


class BulkGrantResponse(BaseModel):
    success: bool
    batchId: str
    quantity: int
    studentsUpdated: int
    results: list[GrantResultResponse]


class TicketGrantResponse(BaseModel):
    id: int
    quantity: int
    type: str
    reason: Optional[str] = None
    issuedBy: int
    issuedAt: Optional[datetime] = None


class TicketBalanceResponse(BaseModel):
    studentId: int
    currentTickets: int
    maxTickets: int = MAX_TICKETS
    recentGrants: list[TicketGrantResponse] = []
