"""
Civil-time windows for date-range queries.

Timestamps are stored in UTC, but "July 2025" means July in the office's
civil timezone (fixed offset UTC+05:30).  A window is a half-open UTC range
``[start, end)``: local midnight on the first day, shifted back by the
offset, up to the same instant for the next month / year.

Example: ``month_range(2025, 7)`` ->
``[2025-06-30T18:30:00Z, 2025-07-31T18:30:00Z)``.
"""

from datetime import date, datetime, timezone
from typing import Any, Tuple

from catalog import TIMEZONE_OFFSET

CIVIL_TZ = timezone(TIMEZONE_OFFSET, "IST")

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

# Fallback formats for strings ``datetime.fromisoformat`` rejects
_DATE_FORMATS = [
    "%d/%m/%Y",        # EU format
    "%d-%m-%Y",        # EU dash
    "%B %d, %Y",       # January 1, 2025
    "%b %d, %Y",       # Jan 1, 2025
    "%B %Y",           # July 2025
]


def _civil_midnight_utc(year: int, month: int, day: int = 1) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc) - TIMEZONE_OFFSET


def month_range(year: int, month: int) -> Tuple[datetime, datetime]:
    start = _civil_midnight_utc(year, month)
    if month == 12:
        end = _civil_midnight_utc(year + 1, 1)
    else:
        end = _civil_midnight_utc(year, month + 1)
    return start, end


def year_range(year: int) -> Tuple[datetime, datetime]:
    return _civil_midnight_utc(year, 1), _civil_midnight_utc(year + 1, 1)


def month_name(month: int) -> str:
    if 1 <= month <= 12:
        return MONTH_NAMES[month - 1]
    return ""


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are civil wall-clock time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=CIVIL_TZ)
    return value.astimezone(timezone.utc)


def parse_instant(value: Any) -> Any:
    """Convert a date-like value to an aware UTC ``datetime``.

    ISO-8601 strings with an offset (or ``Z``) keep it; strings without one,
    including date-only strings, are civil local time.  A plausible 4-digit
    year number means local midnight on January 1st.  Anything that does not
    parse is returned unchanged.
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return _civil_midnight_utc(value.year, value.month, value.day)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if 1000 <= value <= 9999:
            return _civil_midnight_utc(value, 1)
        return value
    if not isinstance(value, str):
        return value

    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return _as_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return value


def to_civil(instant: datetime) -> datetime:
    """Render a stored instant in civil time (naive values are UTC, as PyMongo returns them)."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(CIVIL_TZ)


def civil_today() -> date:
    return datetime.now(CIVIL_TZ).date()
