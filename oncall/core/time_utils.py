import datetime
import logging
import re
from typing import Any

from oncall.core.config import DEFAULT_UTC_OFFSET

logger = logging.getLogger(__name__)

_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})$")

# Fixed English names, independent of the process locale.
_WEEKDAY_ABBR = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _offset_from_string(value: str) -> datetime.timezone | None:
    s = value.strip()
    if s in ("Z", "z", "UTC"):
        return datetime.timezone.utc
    match = _OFFSET_RE.match(s)
    if not match:
        return None
    sign, hours, minutes = match.groups()
    delta = datetime.timedelta(hours=int(hours), minutes=int(minutes))
    if delta >= datetime.timedelta(hours=24):
        return None
    return datetime.timezone(-delta if sign == "-" else delta)


DEFAULT_TZ: datetime.timezone = _offset_from_string(DEFAULT_UTC_OFFSET) or datetime.timezone.utc


def parse_offset(value: Any) -> datetime.timezone:
    """Parse "+05:30" style offsets; fall back to DEFAULT_UTC_OFFSET with a warning."""
    if isinstance(value, datetime.tzinfo):
        offset = value.utcoffset(None)
        if offset is not None:
            return datetime.timezone(offset)
    if isinstance(value, str):
        tz = _offset_from_string(value)
        if tz is not None:
            return tz
    logger.warning("Invalid UTC offset %r, using default offset %s", value, DEFAULT_UTC_OFFSET)
    return DEFAULT_TZ


def parse_instant(value: Any) -> datetime.datetime:
    """
    Parse an ISO-8601 instant into an aware datetime.

    Accepts strings and datetime objects (YAML loaders produce both). A value
    without an offset gets DEFAULT_UTC_OFFSET and a WARNING log line.

    Raises:
        ValueError: if the value is not an ISO-8601 instant at all
    """
    if isinstance(value, datetime.datetime):
        parsed = value
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.datetime.fromisoformat(s)
        except ValueError as e:
            raise ValueError(f"Invalid ISO-8601 instant: {value!r}") from e
    else:
        raise ValueError(f"Unsupported instant type: {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        logger.warning("Instant %r has no UTC offset, using default offset %s", value, DEFAULT_UTC_OFFSET)
        return parsed.replace(tzinfo=DEFAULT_TZ)
    return parsed


def ensure_aware(value: datetime.datetime) -> datetime.datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def clock_minutes(value: datetime.time | datetime.datetime) -> int:
    """Minutes since local midnight."""
    return value.hour * 60 + value.minute


def is_weekend_day(day: datetime.date) -> bool:
    return day.weekday() >= 5


def at_clock(day: datetime.date, clock: datetime.time, tz: datetime.tzinfo) -> datetime.datetime:
    """The instant at `clock` on local date `day` in `tz`, seconds dropped."""
    return datetime.datetime.combine(day, clock.replace(second=0, microsecond=0), tzinfo=tz)


def legacy_date_string(day: datetime.date) -> str:
    """Format like JavaScript Date.toDateString(), e.g. "Thu Sep 25 2025"."""
    return f"{_WEEKDAY_ABBR[day.weekday()]} {_MONTH_ABBR[day.month - 1]} {day.day:02d} {day.year}"


def parse_legacy_date_string(value: str) -> datetime.date | None:
    """Inverse of legacy_date_string; None when the value does not match."""
    parts = value.split(" ")
    if len(parts) != 4 or parts[0] not in _WEEKDAY_ABBR or parts[1] not in _MONTH_ABBR:
        return None
    try:
        return datetime.date(int(parts[3]), _MONTH_ABBR.index(parts[1]) + 1, int(parts[2]))
    except ValueError:
        return None


def format_utc(value: datetime.datetime | None) -> str:
    """Format an instant as "Sep 25, 4:00 AM UTC"."""
    if value is None:
        return "TBD"
    utc = ensure_aware(value).astimezone(datetime.timezone.utc)
    hour = utc.hour % 12 or 12
    suffix = "AM" if utc.hour < 12 else "PM"
    return f"{_MONTH_ABBR[utc.month - 1]} {utc.day}, {hour}:{utc.minute:02d} {suffix} UTC"


def add_months(day: datetime.date, months: int) -> datetime.date:
    """Shift a date by whole months, clamping the day to the target month."""
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    for candidate_day in (day.day, 30, 29, 28):
        try:
            return datetime.date(year, month, min(day.day, candidate_day))
        except ValueError:
            continue
    raise ValueError(f"Cannot shift {day} by {months} months")
