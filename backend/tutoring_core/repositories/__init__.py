# backend/tutoring_core/repositories/__init__.py
"""
Repository Pattern Implementation for the tutoring booking core.

Key Components:
- BaseRepository: generic CRUD, flush-only (services own commits)
- RepositoryFactory: factory for creating repository instances
- AvailabilityRepository: single-query availability evaluation
- PackageRepository: packages, row lock and the usage ledger
- SessionRepository / BookingRepository: sessions, seats and capacity counts
- WaitlistRepository: ordered queue with gapless compaction

Usage:
    from tutoring_core.repositories import RepositoryFactory

    repository = RepositoryFactory.create_package_repository(db)
    package = repository.get_package_for_student(package_id, student_id)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .package_repository import PackageRepository
from .session_repository import SessionRepository
from .waitlist_repository import WaitlistRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRepository",
    "PackageRepository",
    "RepositoryFactory",
    "SessionRepository",
    "WaitlistRepository",
]
