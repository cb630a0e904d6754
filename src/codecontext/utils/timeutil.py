"""Timestamp helpers.

All timestamps in the knowledge store are naive UTC. SQLite hands raw
queries back as strings, so anything that reads timestamps through
``Database.execute`` goes through ``parse_timestamp``.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into a naive UTC datetime.

    Accepts datetimes, ISO/SQLite strings and epoch seconds. Returns None for
    empty or unparseable values.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError):
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def age_in_hours(value: Any, now: Optional[datetime] = None) -> Optional[float]:
    """Hours elapsed since ``value`` (None if it cannot be parsed)."""
    timestamp = parse_timestamp(value)
    if timestamp is None:
        return None
    now = now or utcnow()
    return (now - timestamp).total_seconds() / 3600
