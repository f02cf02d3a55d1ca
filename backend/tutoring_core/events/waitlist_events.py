"""Waitlist domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class WaitlistSeatOffered:
    """A seat freed up and the entry at the head of the queue was notified."""

    entry_id: str
    session_id: str
    student_id: str
    notified_at: datetime
    expires_at: datetime
    event_type: str = "waitlist.seat_offered"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WaitlistPromoted:
    """A waitlisted student received a confirmed booking."""

    session_id: str
    student_id: str
    booking_id: str
    package_use_id: Optional[str] = None
    event_type: str = "waitlist.promoted"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WaitlistOfferExpired:
    """A notified student let the offer lapse and was removed from the queue."""

    entry_id: str
    session_id: str
    student_id: str
    expired_at: datetime
    event_type: str = "waitlist.offer_expired"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
