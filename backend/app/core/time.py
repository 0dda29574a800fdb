from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def ms_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).replace(tzinfo=None)


def day_bounds_ms(start: date | None, end: date | None) -> tuple[int | None, int | None]:
    """Inclusive UTC day range as epoch millis: [start 00:00:00.000, end 23:59:59.999]."""
    start_ms = None
    end_ms = None
    if start is not None:
        start_ms = datetime_to_ms(datetime.combine(start, time.min))
    if end is not None:
        end_ms = datetime_to_ms(datetime.combine(end + timedelta(days=1), time.min)) - 1
    return start_ms, end_ms
