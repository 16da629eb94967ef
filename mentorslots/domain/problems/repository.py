"""Problem repository - Database operations for problems"""

from typing import Optional

from sqlalchemy import exists
from sqlalchemy.orm import Session

from ...models import MentoringSession, Problem, ProblemEvent
from ...services.auto_publish import OPEN_SESSION_STATUSES


class ProblemRepository:
    """Repository for problem database operations"""

    @staticmethod
    def get_problem(db: Session, problem_id: int, for_update: bool = False) -> Optional[Problem]:
        query = db.query(Problem).filter(Problem.id == problem_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def list_problems(
        db: Session, created_by: Optional[int] = None, status: Optional[str] = None
    ) -> list[Problem]:
        query = db.query(Problem)
        if created_by:
            query = query.filter(Problem.created_by == created_by)
        if status:
            query = query.filter(Problem.status == status)
        return query.order_by(Problem.created_at.desc(), Problem.id.desc()).all()

    @staticmethod
    def create_problem(db: Session, **problem_data) -> Problem:
        problem = Problem(**problem_data)
        db.add(problem)
        db.flush()
        return problem

    @staticmethod
    def archive_if_status(db: Session, problem_id: int, from_status: str, actor: str) -> bool:
        """
        Conditional transition to archived plus its audit row; does not commit.
        Refused while the problem still has an active or feedback-pending session.
        """
        open_session = exists().where(
            MentoringSession.problem_id == problem_id,
            MentoringSession.status.in_(OPEN_SESSION_STATUSES),
        )
        updated = (
            db.query(Problem)
            .filter(Problem.id == problem_id, Problem.status == from_status, ~open_session)
            .update({Problem.status: "archived"}, synchronize_session=False)
        )
        if updated == 0:
            return False
        db.add(
            ProblemEvent(
                problem_id=problem_id, from_status=from_status, to_status="archived", actor=actor
            )
        )
        return True

    @staticmethod
    def list_events(db: Session, problem_id: int) -> list[ProblemEvent]:
        return (
            db.query(ProblemEvent)
            .filter(ProblemEvent.problem_id == problem_id)
            .order_by(ProblemEvent.created_at.asc(), ProblemEvent.id.asc())
            .all()
        )
