"""
Date helpers for run-date handling.

Run dates are plain calendar dates; they are stored as ISO ``YYYY-MM-DD``
strings so that every table keyed by date compares lexically.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def today_utc() -> date:
    """Return today's calendar date in UTC."""
    return utcnow().date()


def parse_run_date(value: Optional[Union[str, date]]) -> date:
    """Coerce a CLI/API run-date argument into a ``date``.

    Args:
        value: ``None`` (today, UTC), a ``date``/``datetime``, or an ISO
            ``YYYY-MM-DD`` string.

    Returns:
        The run date.

    Raises:
        ValueError: If a string cannot be parsed as an ISO date.
    """
    if value is None:
        return today_utc()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(
            f"Invalid run date '{value}'. Expected format: YYYY-MM-DD."
        ) from exc
