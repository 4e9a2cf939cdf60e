"""
Timestamp helpers.

All timestamps are stored as naive UTC datetimes so that SQLite and
PostgreSQL compare them the same way.
"""
from datetime import datetime, timezone
from typing import Optional, Union
import pytz

from config.settings import CLINIC_TIMEZONE


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Union[datetime, str, None]) -> Optional[datetime]:
    """
    Normalize a caller-supplied timestamp.

    ISO strings are parsed; aware datetimes are converted to UTC; naive
    datetimes are assumed to already be UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(pytz.utc).replace(tzinfo=None)
    return value


def clinic_time(value: datetime) -> datetime:
    """Convert a stored UTC timestamp to the clinic's local timezone"""
    local_tz = pytz.timezone(CLINIC_TIMEZONE)
    return pytz.utc.localize(value).astimezone(local_tz)


def format_clinic_date(value: datetime) -> str:
    return clinic_time(value).strftime("%d/%m/%Y")


def format_clinic_time(value: datetime) -> str:
    return clinic_time(value).strftime("%H:%M")
