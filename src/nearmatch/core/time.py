"""
Clock helpers.

All timestamps the engine stores (post creation, chat messages) are timezone-aware
datetimes in the configured timezone, so API/CLI output never mixes naive and
aware values.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo


def ensure_tz(dt: datetime, timezone: str) -> datetime:
    """Ensure `dt` has tzinfo; attach `timezone` if naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ZoneInfo(timezone))
    return dt


def now_in(timezone: str) -> datetime:
    """Current time as an aware datetime in `timezone`."""
    return datetime.now(ZoneInfo(timezone))
