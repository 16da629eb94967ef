"""
API endpoints for the auto-publish scheduler
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_caller
from ..clock import SystemClock, get_clock
from ..database import get_db
from ..permissions import RUN_SCHEDULER, CallerContext, authorize
from ..services.auto_publish import get_scheduler_status, run_auto_publish

router = APIRouter(prefix="/admin/scheduler", tags=["scheduler"])


class SchedulerStatus(BaseModel):
    enabled: bool
    environment: str
    pending_count: int
    next_scheduled: Optional[datetime] = None


class AutoPublishResult(BaseModel):
    processed_count: int
    published_problems: list[dict]
    errors: list[dict]
    execution_time_ms: int


@router.get("", response_model=SchedulerStatus)
async def scheduler_status(
    caller: CallerContext = Depends(get_current_caller), db: Session = Depends(get_db)
):
    """Drafts waiting for publication and the next publish time"""
    authorize(caller, RUN_SCHEDULER)
    return SchedulerStatus(**get_scheduler_status(db))


@router.post("/run", response_model=AutoPublishResult)
async def run_scheduler(
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    """
    Manually trigger the auto-publish sweep
    (the arq worker runs the same sweep every few minutes)
    """
    authorize(caller, RUN_SCHEDULER)
    return AutoPublishResult(**run_auto_publish(db, clock))
