"""Problem router - FastAPI endpoints for problem authoring and publication"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_caller
from ...clock import SystemClock, from_utc_naive, get_clock
from ...database import get_db
from ...models import Problem
from ...permissions import CallerContext
from .schemas import (
    ProblemCreate,
    ProblemResponse,
    ProblemUpdate,
    PublishRequest,
    PublishResponse,
)
from .service import ProblemService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/problems", tags=["Problems"])


def get_problem_service(
    db: Session = Depends(get_db), clock: SystemClock = Depends(get_clock)
) -> ProblemService:
    """Dependency injection for ProblemService"""
    return ProblemService(db, clock)


def to_problem_response(problem: Problem) -> ProblemResponse:
    return ProblemResponse(
        id=problem.id,
        title=problem.title,
        content=problem.content,
        status=problem.status,
        scheduledPublishAt=(
            from_utc_naive(problem.scheduled_publish_at) if problem.scheduled_publish_at else None
        ),
        previewLeadTime=problem.preview_lead_time,
        previewLeadUnit=problem.preview_lead_unit,
        createdBy=problem.created_by,
        createdAt=problem.created_at,
    )


@router.get("", response_model=list[ProblemResponse])
async def list_problems(
    status: Optional[str] = Query(None),
    caller: CallerContext = Depends(get_current_caller),
    service: ProblemService = Depends(get_problem_service),
):
    return [to_problem_response(p) for p in service.list_problems(caller, status)]


@router.post("", response_model=ProblemResponse, status_code=201)
async def create_problem(
    data: ProblemCreate,
    caller: CallerContext = Depends(get_current_caller),
    service: ProblemService = Depends(get_problem_service),
):
    """Create a new draft problem"""
    problem = service.create_problem(
        caller,
        data.title,
        data.content,
        scheduled_publish_at=data.scheduledPublishAt,
        preview_lead_time=data.previewLeadTime,
        preview_lead_unit=data.previewLeadUnit,
    )
    return to_problem_response(problem)


@router.get("/{problem_id}", response_model=ProblemResponse)
async def get_problem(
    problem_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: ProblemService = Depends(get_problem_service),
):
    return to_problem_response(service.get_problem(caller, problem_id))


@router.patch("/{problem_id}", response_model=ProblemResponse)
async def update_problem(
    problem_id: int,
    data: ProblemUpdate,
    caller: CallerContext = Depends(get_current_caller),
    service: ProblemService = Depends(get_problem_service),
):
    problem = service.update_problem(
        caller,
        problem_id,
        title=data.title,
        content=data.content,
        scheduled_publish_at=data.scheduledPublishAt,
        preview_lead_time=data.previewLeadTime,
        preview_lead_unit=data.previewLeadUnit,
    )
    return to_problem_response(problem)


@router.post("/{problem_id}/publish", response_model=PublishResponse)
async def publish_problem(
    problem_id: int,
    data: Optional[PublishRequest] = None,
    caller: CallerContext = Depends(get_current_caller),
    service: ProblemService = Depends(get_problem_service),
):
    """Publish now, or schedule publication when a future time is given"""
    problem, published = service.publish_problem(
        caller, problem_id, data.scheduledPublishAt if data else None
    )
    message = "Problem published." if published else "Problem scheduled for publication."
    return PublishResponse(
        success=True, published=published, message=message, problem=to_problem_response(problem)
    )


@router.post("/{problem_id}/archive", response_model=ProblemResponse)
async def archive_problem(
    problem_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: ProblemService = Depends(get_problem_service),
):
    return to_problem_response(service.archive_problem(caller, problem_id))


@router.get("/{problem_id}/history")
async def get_problem_history(
    problem_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: ProblemService = Depends(get_problem_service),
):
    """Status transitions of a problem, oldest first"""
    events = service.get_history(caller, problem_id)
    return [
        {
            "fromStatus": e.from_status,
            "toStatus": e.to_status,
            "actor": e.actor,
            "createdAt": e.created_at,
        }
        for e in events
    ]
