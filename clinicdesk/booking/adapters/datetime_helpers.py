import datetime as dt
from collections.abc import Callable
from zoneinfo import ZoneInfo

from loguru import logger


def time_to_12h(time: dt.time) -> str:
    """Convert ``time(14, 30)`` → ``2:30 PM`` for staff-facing messages.

    No leading zero on the hour (``3:30 PM`` not ``03:30 PM``).
    """
    hour = time.hour % 12 or 12
    period = "AM" if time.hour < 12 else "PM"
    return f"{hour}:{time.strftime('%M')} {period}"


def calculate_end_time(start: dt.time, duration_minutes: int) -> dt.time:
    """Add ``duration_minutes`` to ``start``, wrapping past midnight."""
    anchor = dt.datetime.combine(dt.date(2000, 1, 1), start)
    return (anchor + dt.timedelta(minutes=duration_minutes)).time()


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def clinic_today(clock: Callable[[], dt.datetime], tz: dt.tzinfo) -> dt.date:
    """Today's date at the clinic, given an aware (or UTC-naive) clock."""
    now = clock()
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    return now.astimezone(tz).date()


def slots_overlap(start: dt.time, end: dt.time, other_start: dt.time, other_end: dt.time) -> bool:
    """Whether ``[start, end)`` and ``[other_start, other_end)`` share any minute.

    Back-to-back slots (one ends when the next starts) do not overlap.
    """
    return start < other_end and other_start < end
