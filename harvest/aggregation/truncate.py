"""Truncate millisecond timestamps to the start of their UTC day, week, month or year."""

from datetime import datetime, timedelta, timezone

from harvest.aggregation.models import Period


def to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def to_ms(dt: datetime) -> int:
    return int(dt.timestamp()) * 1000


def truncate_day(ms: int) -> int:
    dt = to_datetime(ms)
    return to_ms(datetime(dt.year, dt.month, dt.day, tzinfo=timezone.utc))


def truncate_week(ms: int) -> int:
    """Monday 00:00 of the ISO week."""
    dt = to_datetime(truncate_day(ms))
    return to_ms(dt - timedelta(days=dt.weekday()))


def truncate_month(ms: int) -> int:
    dt = to_datetime(ms)
    return to_ms(datetime(dt.year, dt.month, 1, tzinfo=timezone.utc))


def truncate_year(ms: int) -> int:
    dt = to_datetime(ms)
    return to_ms(datetime(dt.year, 1, 1, tzinfo=timezone.utc))


TRUNCATORS = {
    Period.DAY: truncate_day,
    Period.WEEK: truncate_week,
    Period.MONTH: truncate_month,
    Period.YEAR: truncate_year,
}


def truncate(period: Period, ms: int) -> int:
    return TRUNCATORS[period](ms)


def next_bucket(period: Period, ms: int) -> int:
    """Start of the bucket that follows the one `ms` falls into."""
    dt = to_datetime(truncate(period, ms))
    if period == Period.DAY:
        return to_ms(dt + timedelta(days=1))
    if period == Period.WEEK:
        return to_ms(dt + timedelta(weeks=1))
    if period == Period.MONTH:
        if dt.month == 12:
            return to_ms(dt.replace(year=dt.year + 1, month=1))
        return to_ms(dt.replace(month=dt.month + 1))
    return to_ms(dt.replace(year=dt.year + 1))


def date_string(ms: int) -> str:
    return to_datetime(ms).strftime("%Y-%m-%d")
