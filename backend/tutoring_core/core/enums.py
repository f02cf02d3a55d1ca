# backend/tutoring_core/core/enums.py
"""
Core enums for the tutoring booking core.

Values are stored as plain strings in the database so they stay readable
in SQL and stable across migrations.
"""

from enum import Enum


class ServiceType(str, Enum):
    """Kind of session a credit or a session belongs to."""

    PRIVATE = "PRIVATE"
    GROUP = "GROUP"
    COURSE = "COURSE"  # Paid through enrollment, never through package credits


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # Checkout in flight
    INVITED = "INVITED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    FORFEIT = "FORFEIT"


class SessionStatus(str, Enum):
    """Scheduling status of a session."""

    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class AvailabilityKind(str, Enum):
    """Kinds of teacher availability rules."""

    ONE_OFF = "ONE_OFF"
    RECURRING = "RECURRING"
    BLACKOUT = "BLACKOUT"  # Always overrides availability


class WaitlistState(str, Enum):
    """Derived state of a waitlist entry."""

    WAITING = "WAITING"
    NOTIFIED = "NOTIFIED"
    EXPIRED = "EXPIRED"
    PROMOTED = "PROMOTED"
    WITHDRAWN = "WITHDRAWN"
