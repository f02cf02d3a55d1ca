# backend/tutoring_core/repositories/booking_repository.py
"""
Booking Repository

Bookings are unique per (session, student); lookups here follow that key.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query):
        return query.options(joinedload(Booking.session))

    def get_for_student(self, booking_id: str, student_id: str) -> Optional[Booking]:
        try:
            return (
                self._apply_eager_loading(self._build_query())
                .filter(Booking.id == booking_id, Booking.student_id == student_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading booking %s: %s", booking_id, e)
            raise RepositoryException(f"Failed to load booking: {e}") from e

    def get_by_session_and_student(self, session_id: str, student_id: str) -> Optional[Booking]:
        try:
            return (
                self._build_query()
                .filter(Booking.session_id == session_id, Booking.student_id == student_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(
                "Error loading booking for session %s student %s: %s", session_id, student_id, e
            )
            raise RepositoryException(f"Failed to load booking: {e}") from e
