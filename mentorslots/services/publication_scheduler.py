"""
Problem publication scheduling and preview visibility.

Pure functions: given a block anchor, the 1-based queue position of a
reservation inside that block and the preview lead time, compute when the
learner's problem starts and when it becomes visible.

    scheduled_start_at = block_start + (queue_position - 1) x 10 minutes
    visible_from       = scheduled_start_at - preview_lead_minutes
    can_show_problem   = now >= visible_from

All values are converted into the configured civil timezone first.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from ..clock import CIVIL_TZ, to_civil
from ..config import BLOCK_START_TIMES, QUEUE_STEP_MINUTES
from ..errors import InvalidArgumentError
from ..shared.validators import parse_time_label


@dataclass(frozen=True)
class ScheduleComputation:
    scheduled_start_at: datetime
    visible_from: datetime
    can_show_problem: bool
    time_until_visible: timedelta
    time_until_start: timedelta

    def to_dict(self) -> dict:
        return {
            "scheduled_start_at": self.scheduled_start_at.isoformat(),
            "visible_from": self.visible_from.isoformat(),
            "can_show_problem": self.can_show_problem,
            "time_until_visible_ms": int(self.time_until_visible.total_seconds() * 1000),
            "time_until_start_ms": int(self.time_until_start.total_seconds() * 1000),
        }


def calculate_scheduled_start(block_start: datetime, queue_position: int) -> datetime:
    if queue_position < 1:
        raise InvalidArgumentError(
            "Queue position must be 1 or greater", queue_position=queue_position
        )
    return to_civil(block_start) + timedelta(minutes=(queue_position - 1) * QUEUE_STEP_MINUTES)


def calculate_visible_from(scheduled_start_at: datetime, preview_lead_minutes: int) -> datetime:
    if preview_lead_minutes < 0:
        raise InvalidArgumentError(
            "Preview lead time cannot be negative", preview_lead_minutes=preview_lead_minutes
        )
    return to_civil(scheduled_start_at) - timedelta(minutes=preview_lead_minutes)


def can_show_problem(
    scheduled_start_at: datetime, preview_lead_minutes: int, now: datetime
) -> bool:
    return to_civil(now) >= calculate_visible_from(scheduled_start_at, preview_lead_minutes)


def calculate_problem_schedule(
    block_start: datetime,
    queue_position: int,
    preview_lead_minutes: int,
    now: datetime,
) -> ScheduleComputation:
    """Full schedule for one queued assignment; recomputed on every query"""
    now = to_civil(now)
    scheduled_start_at = calculate_scheduled_start(block_start, queue_position)
    visible_from = calculate_visible_from(scheduled_start_at, preview_lead_minutes)

    return ScheduleComputation(
        scheduled_start_at=scheduled_start_at,
        visible_from=visible_from,
        can_show_problem=now >= visible_from,
        time_until_visible=max(timedelta(0), visible_from - now),
        time_until_start=max(timedelta(0), scheduled_start_at - now),
    )


def get_block_for_time(time_label: str) -> int:
    """Teaching period (1-based) that a slot time falls into"""
    minutes = parse_time_label(time_label)
    block = 1
    for index, start in enumerate(BLOCK_START_TIMES, start=1):
        if parse_time_label(start) <= minutes:
            block = index
    return block


def get_block_start_time(day: date, block: int) -> datetime:
    """Civil-time anchor of a teaching block on a given day"""
    if block < 1 or block > len(BLOCK_START_TIMES):
        raise InvalidArgumentError(
            f"Block must be between 1 and {len(BLOCK_START_TIMES)}", block=block
        )
    minutes = parse_time_label(BLOCK_START_TIMES[block - 1])
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=CIVIL_TZ)


def format_time_remaining(remaining: timedelta) -> str:
    """Readable countdown such as '2d 3h', '1h 5m' or '12m'"""
    if remaining <= timedelta(0):
        return "now"

    minutes = int(remaining.total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    return f"{minutes}m"
