"""Shared utility functions used by models, services and blueprints.

parse_datetime:  ISO-8601 input → aware UTC datetime (raises ValueError)
as_utc / isoformat / hours_between: timezone normalisation for stored values
first_int:       leading integer in free text such as "4-6 hours"
"""
import logging
import re
from datetime import date, datetime, time, timezone

logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"\d+")


def as_utc(value):
    """Return *value* as an aware UTC datetime.

    SQLite hands back naive datetimes even for timezone-aware columns; those
    are stored in UTC, so they are tagged rather than converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value):
    """ISO-8601 string for a stored datetime, or None."""
    value = as_utc(value)
    return value.isoformat() if value else None


def hours_between(start, end) -> float:
    """Elapsed hours from *start* to *end*."""
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime into an aware UTC datetime.

    Returns None for empty input. Raises ValueError for anything unparseable
    so blueprints can answer 400. A bare date means midnight UTC.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValueError(
            "Invalid datetime format. Use ISO-8601, e.g. 2026-01-31T18:00:00Z."
        ) from exc


def first_int(text, default=None):
    """Return the first integer embedded in *text*, or *default*.

    >>> first_int("4-6 hours")
    4
    """
    if not text:
        return default
    match = _INT_RE.search(str(text))
    if not match:
        return default
    return int(match.group(0))
