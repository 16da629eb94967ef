"""Problem service - Authoring and manual publication workflow"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...clock import SystemClock, to_utc_naive
from ...errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from ...models import Problem, ProblemEvent
from ...permissions import (
    ARCHIVE_PROBLEM,
    CREATE_PROBLEM,
    PUBLISH_PROBLEM,
    CallerContext,
    authorize,
)
from ...services.auto_publish import has_open_sessions, publish_if_draft, validate_status_transition
from ...shared.transactions import unit_of_work
from .repository import ProblemRepository

logger = logging.getLogger(__name__)


class ProblemService:
    """Service layer for problem operations"""

    def __init__(self, db: Session, clock: SystemClock):
        self.db = db
        self.clock = clock
        self.repo = ProblemRepository()

    def _get_owned_problem(self, caller: CallerContext, problem_id: int, for_update: bool = False) -> Problem:
        problem = self.repo.get_problem(self.db, problem_id, for_update=for_update)
        if not problem:
            raise NotFoundError("Problem not found", problem_id=problem_id)
        if problem.created_by != caller.account_id:
            raise PermissionDeniedError("You can only manage problems you created.")
        return problem

    def create_problem(
        self,
        caller: CallerContext,
        title: Optional[str],
        content: Optional[str],
        scheduled_publish_at: Optional[datetime] = None,
        preview_lead_time: Optional[int] = None,
        preview_lead_unit: Optional[str] = None,
    ) -> Problem:
        """New problems always start as drafts"""
        authorize(caller, CREATE_PROBLEM)

        data = {
            "title": title,
            "content": content,
            "status": "draft",
            "created_by": caller.account_id,
            "scheduled_publish_at": to_utc_naive(scheduled_publish_at) if scheduled_publish_at else None,
        }
        if preview_lead_time is not None:
            data["preview_lead_time"] = preview_lead_time
        if preview_lead_unit is not None:
            data["preview_lead_unit"] = preview_lead_unit

        with unit_of_work(self.db, "Create problem"):
            problem = self.repo.create_problem(self.db, **data)

        self.db.refresh(problem)
        logger.info(f"Problem {problem.id} created by teacher {caller.account_id}")
        return problem

    def update_problem(self, caller: CallerContext, problem_id: int, **updates) -> Problem:
        authorize(caller, CREATE_PROBLEM)

        with unit_of_work(self.db, "Update problem"):
            problem = self._get_owned_problem(caller, problem_id, for_update=True)
            if problem.status == "archived":
                raise ConflictError("Archived problems cannot be edited.")

            if updates.get("scheduled_publish_at") is not None:
                updates["scheduled_publish_at"] = to_utc_naive(updates["scheduled_publish_at"])
            for key, value in updates.items():
                if value is not None and hasattr(problem, key):
                    setattr(problem, key, value)

        self.db.refresh(problem)
        return problem

    def list_problems(self, caller: CallerContext, status: Optional[str] = None) -> list[Problem]:
        """Teachers see their own problems, everyone else only published ones"""
        if caller.can(CREATE_PROBLEM):
            return self.repo.list_problems(self.db, caller.account_id, status)
        return self.repo.list_problems(self.db, None, "published")

    def get_problem(self, caller: CallerContext, problem_id: int) -> Problem:
        problem = self.repo.get_problem(self.db, problem_id)
        if not problem:
            raise NotFoundError("Problem not found", problem_id=problem_id)
        if problem.created_by == caller.account_id or caller.is_admin:
            return problem
        if problem.status == "published":
            return problem
        raise NotFoundError("Problem not found", problem_id=problem_id)

    def publish_problem(
        self, caller: CallerContext, problem_id: int, scheduled_publish_at: Optional[datetime] = None
    ) -> tuple[Problem, bool]:
        """
        Publish a draft now, or leave it in draft with a future publish time
        for the auto-publish sweep. Returns (problem, published_now).
        """
        authorize(caller, PUBLISH_PROBLEM)

        with unit_of_work(self.db, "Publish problem"):
            problem = self._get_owned_problem(caller, problem_id, for_update=True)
            if problem.status == "published":
                raise ConflictError("This problem is already published.")
            if not validate_status_transition(problem.status, "published"):
                raise ConflictError("Archived problems cannot be published.")
            if not (problem.title or "").strip() or not (problem.content or "").strip():
                raise ValidationError("Both title and content are required to publish.")

            now = self.clock.now_utc_naive()
            if scheduled_publish_at is not None:
                target = to_utc_naive(scheduled_publish_at)
                if target <= now:
                    raise ValidationError("The scheduled publish time must be in the future.")
                problem.scheduled_publish_at = target

            if problem.scheduled_publish_at and problem.scheduled_publish_at > now:
                published = False
            else:
                published = publish_if_draft(self.db, problem.id, str(caller.account_id))
                if not published:
                    raise ConflictError("This problem was published concurrently.")

        self.db.refresh(problem)
        if published:
            logger.info(f"Problem {problem_id} published by teacher {caller.account_id}")
        else:
            logger.info(
                f"Problem {problem_id} scheduled for publication at {problem.scheduled_publish_at} UTC"
            )
        return problem, published

    def archive_problem(self, caller: CallerContext, problem_id: int) -> Problem:
        """Drafts archive unconditionally; published problems only without open sessions"""
        authorize(caller, ARCHIVE_PROBLEM)

        with unit_of_work(self.db, "Archive problem"):
            problem = self._get_owned_problem(caller, problem_id, for_update=True)
            current = problem.status
            if current == "archived":
                raise ConflictError("This problem is already archived.")
            if current == "published" and has_open_sessions(self.db, problem.id):
                raise ConflictError(
                    "Problems with active or feedback-pending sessions cannot be archived."
                )
            if not self.repo.archive_if_status(self.db, problem.id, current, str(caller.account_id)):
                raise ConflictError("The problem changed while archiving, please retry.")

        self.db.refresh(problem)
        logger.info(f"Problem {problem_id} archived ({current} → archived) by {caller.account_id}")
        return problem

    def get_history(self, caller: CallerContext, problem_id: int) -> list[ProblemEvent]:
        self._get_owned_problem(caller, problem_id)
        return self.repo.list_events(self.db, problem_id)
