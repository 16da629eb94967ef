"""Shared validation utilities"""

import re
from datetime import date, datetime
from typing import Optional

TIME_LABEL_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_label(value: str) -> int:
    """
    Parse an ``HH:MM`` label into minutes since midnight.

    Raises:
        ValueError: If the label is not a valid 24h time
    """
    if not value or not isinstance(value, str):
        raise ValueError("Time must be in HH:MM format")
    match = TIME_LABEL_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time_label(minutes: int) -> str:
    """Minutes since midnight back to ``HH:MM``"""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def validate_time_label(value: Optional[str]) -> Optional[str]:
    """Normalize an ``HH:MM`` label, e.g. for pydantic validators"""
    if value is None:
        return value
    return format_time_label(parse_time_label(value))


def parse_date(value) -> date:
    """Accept a date, a datetime or an ISO ``YYYY-MM-DD`` string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD") from e
