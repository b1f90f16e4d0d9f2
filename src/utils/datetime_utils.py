"""Datetime utilities for timezone-aware UTC timestamps and code dates.

Usage:
    from src.utils.datetime_utils import utc_now, roman_month

    # For SQLAlchemy Column defaults
    created_at = Column(DateTime, default=utc_now)

    # For batch codes
    roman_month(utc_now())  # "XII"
"""

from datetime import datetime, timezone
from typing import Optional

from .constants import ROMAN_MONTHS


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def roman_month(moment: Optional[datetime] = None) -> str:
    """Return the Roman numeral for the month of ``moment`` (default: now)."""
    moment = moment or utc_now()
    return ROMAN_MONTHS[moment.month - 1]


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes read back from SQLite.

    SQLite drops tzinfo on round-trip; values written by this service are
    always UTC, so a naive value is interpreted as UTC.
    """
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)
