import calendar
import re
from datetime import datetime, date, timedelta, tzinfo
from zoneinfo import ZoneInfo

from config import settings


DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MS_PER_DAY = 86_400_000


def local_zone() -> tzinfo | None:
    """Zone used for day bucketing; ``None`` means the process local zone."""
    tz_name = (settings.LOCAL_TIMEZONE or "").strip()
    if tz_name:
        return ZoneInfo(tz_name)
    return None


def local_now() -> datetime:
    """Naive wall-clock time in the bucketing zone."""
    tz = local_zone()
    if tz is None:
        return datetime.now()
    return datetime.now(tz).replace(tzinfo=None)


def to_local(instant: datetime) -> datetime:
    """Drop tz information after converting aware instants to local wall-clock time."""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(local_zone()).replace(tzinfo=None)


def normalize_to_midnight(instant: datetime | date) -> datetime:
    """Return 00:00:00.000000 of the local calendar day containing ``instant``."""
    if isinstance(instant, datetime):
        local = to_local(instant)
        return datetime(local.year, local.month, local.day)
    return datetime(instant.year, instant.month, instant.day)


def today_local(now: datetime | None = None) -> datetime:
    return normalize_to_midnight(now if now is not None else local_now())


def format_date_key(day: datetime | date) -> str:
    """Render ``YYYY-MM-DD`` from local components, never via UTC."""
    if isinstance(day, datetime):
        day = to_local(day)
    return f"{day.year:04d}-{day.month:02d}-{day.day:02d}"


def parse_date_key(value: str) -> datetime:
    """Inverse of :func:`format_date_key`; returns local midnight."""
    if not DATE_KEY_RE.match(value or ""):
        raise ValueError(f"Invalid date key: {value!r}")
    year, month, day = (int(part) for part in value.split("-"))
    return datetime(year, month, day)


def parse_date_param(value: str) -> datetime:
    """
    Parse a client supplied date.

    ``YYYY-MM-DD`` is taken as a local calendar day. Anything else must be an
    ISO-8601 timestamp and is normalized to the local day it falls on.
    """
    raw = (value or "").strip()
    if DATE_KEY_RE.match(raw):
        return parse_date_key(raw)
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return normalize_to_midnight(datetime.fromisoformat(raw))


def js_weekday(day: datetime | date) -> int:
    """Day of week with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def week_dates_containing(day: datetime | date) -> list[datetime]:
    """Monday..Sunday of the week containing ``day``, each at local midnight."""
    current = normalize_to_midnight(day)
    day_of_week = js_weekday(current)
    monday_offset = -6 if day_of_week == 0 else 1 - day_of_week
    monday = current + timedelta(days=monday_offset)
    return [monday + timedelta(days=offset) for offset in range(7)]


def days_between(later: datetime, earlier: datetime) -> int:
    """Whole days between two canonical days, rounded to absorb DST shifts."""
    delta_ms = (later - earlier).total_seconds() * 1000.0
    return round(delta_ms / MS_PER_DAY)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """First and last canonical day of a month."""
    return datetime(year, month, 1), datetime(year, month, days_in_month(year, month))


def end_of_day(day: datetime) -> datetime:
    return normalize_to_midnight(day) + timedelta(days=1) - timedelta(microseconds=1)
