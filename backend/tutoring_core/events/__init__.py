"""Domain events handed to the notification dispatcher after commit."""

from .booking_events import BookingCancelled, PackageCreditsUsed
from .waitlist_events import WaitlistOfferExpired, WaitlistPromoted, WaitlistSeatOffered

__all__ = [
    "BookingCancelled",
    "PackageCreditsUsed",
    "WaitlistOfferExpired",
    "WaitlistPromoted",
    "WaitlistSeatOffered",
]
