# backend/tutoring_core/core/clock.py
"""Time source shared by services that deal with expiry and deadlines."""

from datetime import datetime, timezone
import math
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def window_minutes(start_at: datetime, end_at: datetime) -> int:
    """Length of a window in whole minutes; a partial minute counts as one."""
    return math.ceil((end_at - start_at).total_seconds() / 60)
