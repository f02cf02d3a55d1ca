# backend/tutoring_core/repositories/factory.py
"""
Repository Factory for the tutoring booking core.

Provides centralized creation of repository instances, ensuring consistent
initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .booking_repository import BookingRepository
    from .package_repository import PackageRepository
    from .session_repository import SessionRepository
    from .waitlist_repository import WaitlistRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation so services never build repositories
    by hand.
    """

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        """Create a generic base repository for any model."""
        return BaseRepository(db, model)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        """Create repository for availability rules and window checks."""
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_package_repository(db: Session) -> "PackageRepository":
        """Create repository for packages and the usage ledger."""
        from .package_repository import PackageRepository

        return PackageRepository(db)

    @staticmethod
    def create_session_repository(db: Session) -> "SessionRepository":
        """Create repository for scheduled sessions."""
        from .session_repository import SessionRepository

        return SessionRepository(db)

    @staticmethod
    def create_waitlist_repository(db: Session) -> "WaitlistRepository":
        """Create repository for waitlist queues."""
        from .waitlist_repository import WaitlistRepository

        return WaitlistRepository(db)
