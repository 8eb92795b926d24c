"""Helpers for the ``HH:MM`` times and ISO dates used across the API."""
import re
from datetime import date, datetime

TIME_RE = re.compile(r'^([01]?[0-9]|2[0-3]):([0-5][0-9])$')

# Index matches the 0=Sunday numbering used by doctor schedules
DAY_NAMES = ['sunday', 'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday']


def is_valid_time(value) -> bool:
    return isinstance(value, str) and TIME_RE.match(value.strip()) is not None


def to_minutes(value: str) -> int:
    """'14:30' -> 870. Raises ValueError on anything that is not HH:MM."""
    match = TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time '{value}'. Use HH:MM format")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    """870 -> '14:30'. Values past midnight wrap to the next day."""
    minutes = minutes % (24 * 60)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value) -> date:
    """Accept a date, a datetime or an ISO 8601 string (date or date-time)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Date is required")
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValueError(f"Invalid date '{value}'. Use YYYY-MM-DD format")


def day_of_week(target: date) -> int:
    """0=Sunday ... 6=Saturday."""
    return (target.weekday() + 1) % 7


def day_name(target: date) -> str:
    return DAY_NAMES[day_of_week(target)]
