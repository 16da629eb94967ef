"""
Automated problem publication
Promotes draft problems whose scheduled publish time has arrived to published

Problem statuses: draft → published → archived (draft → archived also allowed)
"""

import logging
import time
from typing import Optional

from sqlalchemy import and_, func, not_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..clock import SystemClock, from_utc_naive
from ..config import AUTO_PUBLISH_ENABLED_ENVIRONMENTS, AUTO_PUBLISH_MAX_BATCH, ENVIRONMENT
from ..models import MentoringSession, Problem, ProblemEvent

logger = logging.getLogger(__name__)

AUTO_PUBLISH_ACTOR = "auto_publish"

# Sessions in these states still need their problem
OPEN_SESSION_STATUSES = ("active", "feedback_pending")

VALID_TRANSITIONS = {
    "draft": ["published", "archived"],
    "published": ["archived"],
    "archived": [],  # Terminal state
}


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """
    Validate if a problem status transition is allowed

    Args:
        current_status: Current problem status
        new_status: Desired new status

    Returns:
        bool: True if transition is valid, False otherwise
    """
    if current_status == new_status:
        return True
    return new_status in VALID_TRANSITIONS.get(current_status, [])


def has_open_sessions(db: Session, problem_id: int) -> bool:
    """True while any session still works on the problem"""
    return (
        db.query(MentoringSession.id)
        .filter(
            MentoringSession.problem_id == problem_id,
            MentoringSession.status.in_(OPEN_SESSION_STATUSES),
        )
        .first()
        is not None
    )


def publish_if_draft(db: Session, problem_id: int, actor: str) -> bool:
    """
    Conditionally flip one problem from draft to published and record the
    transition. Does not commit.

    Returns:
        bool: False when the problem was no longer a draft (someone else won)
    """
    updated = (
        db.query(Problem)
        .filter(Problem.id == problem_id, Problem.status == "draft")
        .update({Problem.status: "published"}, synchronize_session=False)
    )
    if updated == 0:
        return False
    db.add(
        ProblemEvent(problem_id=problem_id, from_status="draft", to_status="published", actor=actor)
    )
    return True


def is_auto_publish_enabled(environment: Optional[str] = None) -> bool:
    return (environment or ENVIRONMENT) in AUTO_PUBLISH_ENABLED_ENVIRONMENTS


def run_auto_publish(db: Session, clock: SystemClock, max_batch_size: int = AUTO_PUBLISH_MAX_BATCH) -> dict:
    """
    Publish every draft whose scheduled time has arrived
    Safe to run concurrently with itself and with manual publishes: each
    problem is published by a conditional update, so a lost race is a skip

    Returns:
        dict: processed_count, published_problems, errors, execution_time_ms
    """
    started = time.monotonic()
    now = clock.now_utc_naive()

    summary = {
        "processed_count": 0,
        "published_problems": [],
        "errors": [],
        "execution_time_ms": 0,
    }

    is_due = and_(
        Problem.status == "draft",
        Problem.scheduled_publish_at.isnot(None),
        Problem.scheduled_publish_at <= now,
    )
    has_body = and_(
        func.length(func.trim(func.coalesce(Problem.title, ""))) > 0,
        func.length(func.trim(func.coalesce(Problem.content, ""))) > 0,
    )

    # Incomplete drafts are reported but never take a place in the batch
    incomplete = (
        db.query(Problem.id)
        .filter(is_due, not_(has_body))
        .order_by(Problem.scheduled_publish_at.asc(), Problem.id.asc())
        .limit(max_batch_size)
        .all()
    )
    for (problem_id,) in incomplete:
        summary["processed_count"] += 1
        logger.warning(f"Problem {problem_id} is due but has no title or content, not publishing")
        summary["errors"].append(
            {"problem_id": problem_id, "error": "Problem title and content are required"}
        )

    due = (
        db.query(Problem)
        .filter(is_due, has_body)
        .order_by(Problem.scheduled_publish_at.asc(), Problem.id.asc())
        .limit(max_batch_size)
        .all()
    )

    for problem in due:
        summary["processed_count"] += 1
        problem_id = problem.id
        title = problem.title

        try:
            published = publish_if_draft(db, problem_id, AUTO_PUBLISH_ACTOR)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Auto-publish of problem {problem_id} failed: {str(e)}")
            summary["errors"].append({"problem_id": problem_id, "error": str(e)})
            continue

        if published:
            summary["published_problems"].append(
                {"id": problem_id, "title": title, "published_at": clock.now().isoformat()}
            )
            logger.info(f"✅ Problem {problem_id} transitioned: draft → published")
        else:
            logger.debug(f"Problem {problem_id} already published elsewhere, skipped")

    summary["execution_time_ms"] = int((time.monotonic() - started) * 1000)
    if summary["published_problems"] or summary["errors"]:
        logger.info(
            f"📊 Auto-publish: processed={summary['processed_count']} "
            f"published={len(summary['published_problems'])} errors={len(summary['errors'])}"
        )
    else:
        logger.debug("ℹ️ No problems due for publication")
    return summary


def get_scheduler_status(db: Session) -> dict:
    """Drafts waiting for their publish time and the next one due"""
    pending = (
        db.query(Problem)
        .filter(Problem.status == "draft", Problem.scheduled_publish_at.isnot(None))
        .count()
    )
    next_problem = (
        db.query(Problem)
        .filter(Problem.status == "draft", Problem.scheduled_publish_at.isnot(None))
        .order_by(Problem.scheduled_publish_at.asc())
        .first()
    )
    return {
        "enabled": is_auto_publish_enabled(),
        "environment": ENVIRONMENT,
        "pending_count": pending,
        "next_scheduled": (
            from_utc_naive(next_problem.scheduled_publish_at) if next_problem else None
        ),
    }
