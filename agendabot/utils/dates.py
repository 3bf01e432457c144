"""
Date and time helpers.

Appointments and availability are stored as naive datetimes in the business
time zone, compared at minute granularity.
"""

import re
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from ..config import BUSINESS_TIMEZONE

DATE_PATTERN = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def business_tz() -> ZoneInfo:
    return ZoneInfo(BUSINESS_TIMEZONE)


def local_now() -> datetime:
    """Current wall-clock time in the business time zone (naive)"""
    return datetime.now(business_tz()).replace(tzinfo=None, microsecond=0)


def local_today() -> date:
    return local_now().date()


def parse_br_date(value: str) -> date:
    """
    Parse a DD/MM/YYYY date.

    Raises:
        ValueError: If the text is not exactly DD/MM/YYYY or not a real date
    """
    match = DATE_PATTERN.match((value or "").strip())
    if not match:
        raise ValueError("Date must be in DD/MM/YYYY format")
    day, month, year = (int(part) for part in match.groups())
    return date(year, month, day)


def format_br_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def parse_time_of_day(value: str) -> int:
    """Parse HH:MM into minutes since midnight"""
    match = TIME_PATTERN.match((value or "").strip())
    if not match:
        raise ValueError("Time must be in HH:MM format")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time_of_day(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def at_time(day: date, minutes: int) -> datetime:
    """Combine a date with minutes since midnight"""
    return datetime(day.year, day.month, day.day) + timedelta(minutes=minutes)


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive business time; naive values pass through"""
    if value.tzinfo is None:
        return value
    return value.astimezone(business_tz()).replace(tzinfo=None)


def to_rfc3339(value: datetime) -> str:
    """Serialize naive business time with its UTC offset"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=business_tz())
    return value.isoformat()


def parse_rfc3339(value: str) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_local_naive(datetime.fromisoformat(value))


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Half-open interval overlap: [a_start, a_end) and [b_start, b_end)"""
    return a_start < b_end and a_end > b_start
