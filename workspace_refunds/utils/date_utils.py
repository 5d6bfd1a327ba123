"""Date manipulation utilities"""

from datetime import date, datetime, time, timezone


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on the way back)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    """Signed number of hours from start to end"""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of_day(day: date) -> datetime:
    """Last instant of a UTC calendar day, so date ranges include the whole end day"""
    return datetime.combine(day, time.max, tzinfo=timezone.utc)
