"""Booking and ledger domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class PackageCreditsUsed:
    """Fired after credits are debited from a package."""

    package_use_id: str
    student_package_id: str
    student_id: str
    session_id: str
    booking_id: Optional[str]
    credits_used: int
    used_at: datetime
    event_type: str = "package.credits_used"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled."""

    booking_id: str
    session_id: str
    student_id: str
    cancelled_at: datetime
    credits_refunded: int = 0
    event_type: str = "booking.cancelled"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
