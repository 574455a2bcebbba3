import re
import calendar
import logging
import datetime
from typing import Any, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import config

logger = logging.getLogger(__name__)

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_UTC_ALIASES = ("UTC", "ETC/UTC", "Z", "GMT")
# Loose timestamp formats seen in third-party payloads and SQLite CURRENT_TIMESTAMP.
_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%a %d %b %Y %H:%M:%S %z",
)

Instant = Union[datetime.datetime, datetime.date]


def tz_from_name(tz_name: Optional[str]) -> datetime.tzinfo:
    """
    Resolves an IANA timezone name. Empty or UTC-like names map to UTC; unknown
    names fall back to config.DEFAULT_TIMEZONE.
    """
    name = (tz_name or "").strip()
    if not name or name.upper() in _UTC_ALIASES:
        return datetime.timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning(f"Unknown timezone {name!r} ({e}); falling back to {config.DEFAULT_TIMEZONE}.")
    try:
        return ZoneInfo(config.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.error(f"DEFAULT_TIMEZONE {config.DEFAULT_TIMEZONE!r} is not a valid timezone; using UTC.")
        return datetime.timezone.utc


def format_date(d: datetime.date) -> str:
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def to_date_key(instant: Instant, tz_name: Optional[str] = None) -> str:
    """
    Returns the zero-padded YYYY-MM-DD key of `instant`.

    - date objects are used as-is.
    - aware datetimes are converted to `tz_name` if given, else to the process local zone.
    - naive datetimes are local wall-clock times, unless `tz_name` is given, in which
      case they are read as UTC and converted.
    """
    if isinstance(instant, datetime.datetime):
        if tz_name is not None:
            aware = instant if instant.tzinfo is not None else instant.replace(tzinfo=datetime.timezone.utc)
            return format_date(aware.astimezone(tz_from_name(tz_name)).date())
        if instant.tzinfo is not None:
            return format_date(instant.astimezone().date())
        return format_date(instant.date())
    if isinstance(instant, datetime.date):
        return format_date(instant)
    raise TypeError(f"Expected date or datetime, got {type(instant).__name__}")


def parse_date_key(key: str) -> datetime.date:
    """Strict inverse of to_date_key. Raises ValueError for anything else."""
    if not isinstance(key, str) or not _DATE_KEY_RE.match(key):
        raise ValueError(f"Not a YYYY-MM-DD date key: {key!r}")
    year, month, day = (int(p) for p in key.split("-"))
    return datetime.date(year, month, day)


def is_date_key(value: Any) -> bool:
    try:
        parse_date_key(value)
        return True
    except ValueError:
        return False


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """
    Best-effort conversion of a loosely-typed timestamp into an aware datetime.
    Naive values are taken as UTC. Returns None when nothing sensible can be parsed.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime.datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=datetime.timezone.utc)
    if isinstance(value, (int, float)):
        seconds = float(value)
        # Millisecond epochs are 13 digits for any date we care about.
        if abs(seconds) > 1e11:
            seconds = seconds / 1000.0
        try:
            return datetime.datetime.fromtimestamp(seconds, tz=datetime.timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s or _DATE_KEY_RE.match(s):
        return None
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"

    parsed: Optional[datetime.datetime] = None
    try:
        parsed = datetime.datetime.fromisoformat(s)
    except ValueError:
        for fmt in _TIMESTAMP_FORMATS:
            try:
                parsed = datetime.datetime.strptime(s, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def resolve_local_date(value: Any, tz_name: Optional[str]) -> Optional[datetime.date]:
    """
    Maps a timestamp candidate to the calendar date on the wall clock of `tz_name`.
    Date-only values (all-day items) already are local dates and are not shifted.
    """
    if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        return value
    if isinstance(value, str) and _DATE_KEY_RE.match(value.strip()):
        try:
            return parse_date_key(value.strip())
        except ValueError:
            return None
    ts = parse_timestamp(value)
    if ts is None:
        return None
    return ts.astimezone(tz_from_name(tz_name)).date()


def today_in(tz_name: Optional[str] = None, now: Optional[datetime.datetime] = None) -> datetime.date:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    return now.astimezone(tz_from_name(tz_name)).date()


def add_days(d: datetime.date, days: int) -> datetime.date:
    return d + datetime.timedelta(days=days)


def days_between_inclusive(start: datetime.date, end: datetime.date) -> int:
    """Counts both ends; zero or negative when start is after end."""
    return (end - start).days + 1


def month_bounds(year: int, month: int) -> Tuple[datetime.date, datetime.date]:
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, 1), datetime.date(year, month, last_day)


def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    idx = year * 12 + (month - 1) + delta
    new_year, new_month0 = divmod(idx, 12)
    return new_year, new_month0 + 1
