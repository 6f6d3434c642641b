from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes (SQLite hands back naive values) and
    convert aware ones to UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_record_date(value: Any) -> Optional[datetime]:
    """
    Parse an upstream date value (ISO string, "YYYY-MM-DD HH:MM:SS",
    epoch seconds or datetime) into an aware UTC datetime.
    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, timezone.utc)
    try:
        return as_utc(date_parser.parse(str(value)))
    except (ValueError, OverflowError):
        return None


def format_api_date(value: datetime) -> str:
    """Date-only form used by the seller API filters (YYYY-MM-DD)"""
    return as_utc(value).strftime("%Y-%m-%d")
