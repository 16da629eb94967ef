"""
Clock abstraction pinned to one civil timezone.

Services never call ``datetime.now()`` directly; they receive a clock so that
visibility computations are pure and testable. Database timestamps are stored
as naive UTC, civil values are timezone-aware.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from .config import CIVIL_TIMEZONE

CIVIL_TZ = ZoneInfo(CIVIL_TIMEZONE)


def to_civil(value: datetime) -> datetime:
    """Convert to civil time; naive values are taken to already be civil time"""
    if value.tzinfo is None:
        return value.replace(tzinfo=CIVIL_TZ)
    return value.astimezone(CIVIL_TZ)


def to_utc_naive(value: datetime) -> datetime:
    """Storage form: naive UTC"""
    return to_civil(value).astimezone(timezone.utc).replace(tzinfo=None)


def from_utc_naive(value: datetime) -> datetime:
    """Read a stored naive UTC value back as civil time"""
    return value.replace(tzinfo=timezone.utc).astimezone(CIVIL_TZ)


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(CIVIL_TZ)

    def now_utc_naive(self) -> datetime:
        return to_utc_naive(self.now())


class FixedClock(SystemClock):
    """Clock frozen at a given instant, moved explicitly with ``set``"""

    def __init__(self, instant: datetime):
        self._instant = to_civil(instant)

    def set(self, instant: datetime) -> None:
        self._instant = to_civil(instant)

    def now(self) -> datetime:
        return self._instant


_clock = SystemClock()


def get_clock() -> SystemClock:
    """FastAPI dependency; overridden in tests"""
    return _clock
