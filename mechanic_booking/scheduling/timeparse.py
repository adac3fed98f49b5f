"""
Time normalization

Turns the date and time shapes clients send (ISO instants with offsets,
"HH:MM", "HH:MM:SS", legacy day-first strings, date/time objects) into
canonical civil values in the shop's operating timezone.

Everything here is pure. Stored datetimes are naive and already expressed in
the operating timezone, so aware inputs are converted and then stripped.
"""

import re
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from typing import Optional, Union
from zoneinfo import ZoneInfo

from mechanic_booking.core.config import settings
from mechanic_booking.core.errors import MalformedTemporalInput

TemporalInput = Union[str, datetime, date, time, timedelta]

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

# Tried in order. Day-first forms are the legacy encodings older clients send.
_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
)
_DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y")


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def operating_zone() -> ZoneInfo:
    return _zone(settings.scheduling.operating_timezone)


def now_local() -> datetime:
    """Current wall-clock time in the operating timezone (naive)."""
    return datetime.now(operating_zone()).replace(tzinfo=None)


def to_local(value: datetime) -> datetime:
    """Convert an aware datetime to naive operating-zone time; naive passes through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(operating_zone()).replace(tzinfo=None)


def _parse_iso(raw: str) -> Optional[datetime]:
    # fromisoformat only learned the "Z" suffix in 3.11
    candidate = raw[:-1] + "+00:00" if raw.endswith(("Z", "z")) else raw
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def normalize_instant(value: TemporalInput) -> datetime:
    """
    Parse a date-time value into a naive datetime in the operating timezone.

    A bare date becomes midnight of that date. Raises MalformedTemporalInput
    when nothing matches.
    """
    if isinstance(value, datetime):
        return to_local(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if not isinstance(value, str) or not value.strip():
        raise MalformedTemporalInput(f"Unrecognized date/time value: {value!r}")

    raw = value.strip()
    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue

    parsed = _parse_iso(raw)
    if parsed is None:
        raise MalformedTemporalInput(f"Unrecognized date/time value: {value!r}")
    return to_local(parsed)


def parse_date(value: TemporalInput) -> date:
    if isinstance(value, datetime):
        return to_local(value).date()
    if isinstance(value, date):
        return value
    return normalize_instant(value).date()


def parse_time(value: TemporalInput) -> time:
    """Parse a time-of-day. Accepts "HH:MM", "HH:MM:SS", time, timedelta-from-midnight or instants."""
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    if isinstance(value, timedelta):
        # some drivers hand TIME columns back as timedelta since midnight
        if value < timedelta(0) or value >= timedelta(days=1):
            raise MalformedTemporalInput(f"Time of day out of range: {value!r}")
        return (datetime.min + value).time()
    if isinstance(value, datetime):
        return to_local(value).time()
    if isinstance(value, str):
        match = _TIME_RE.match(value.strip())
        if match:
            hours, minutes, seconds = match.group(1), match.group(2), match.group(3) or "0"
            try:
                return time(int(hours), int(minutes), int(seconds))
            except ValueError:
                raise MalformedTemporalInput(f"Time of day out of range: {value!r}") from None
    return normalize_instant(value).time()


def normalize_date(value: TemporalInput) -> str:
    """Canonical "YYYY-MM-DD" in the operating timezone."""
    return parse_date(value).strftime("%Y-%m-%d")


def normalize_time(value: TemporalInput) -> str:
    """Canonical "HH:MM" in the operating timezone."""
    return parse_time(value).strftime("%H:%M")


def format_local_datetime(value: Optional[datetime] = None) -> str:
    value = now_local() if value is None else to_local(value)
    return value.strftime("%Y-%m-%d %H:%M:%S")


def is_valid_time_format(value) -> bool:
    """Strict "HH:MM" check (24h)."""
    if not isinstance(value, str) or not re.fullmatch(r"\d{2}:\d{2}", value):
        return False
    hours, minutes = int(value[:2]), int(value[3:])
    return 0 <= hours < 24 and 0 <= minutes < 60


def is_valid_date_format(value) -> bool:
    """Strict "YYYY-MM-DD" check including days-in-month."""
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True
