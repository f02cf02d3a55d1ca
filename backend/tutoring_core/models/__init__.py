"""
Database models for the tutoring booking core.

- Teacher and TeacherAvailability: who can teach and when
- ClassSession and Booking: scheduled sessions and the seats in them
- PackageProduct, PackageAllowance, StudentPackage, PackageUse: credit packages
  and the append-only usage ledger
- WaitlistEntry: ordered queue for full sessions
"""

from .availability import TeacherAvailability
from .booking import Booking
from .package import PackageAllowance, PackageProduct, PackageUse, StudentPackage
from .session import ClassSession
from .teacher import Teacher
from .waitlist import WaitlistEntry

__all__ = [
    "Booking",
    "ClassSession",
    "PackageAllowance",
    "PackageProduct",
    "PackageUse",
    "StudentPackage",
    "Teacher",
    "TeacherAvailability",
    "WaitlistEntry",
]
