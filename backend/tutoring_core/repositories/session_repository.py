# backend/tutoring_core/repositories/session_repository.py
"""
Session Repository

Session reads, the session row lock used to serialize seat and waitlist
mutations, and capacity counts.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, lazyload

from ..core.enums import BookingStatus, SessionStatus
from ..core.exceptions import RepositoryException
from ..models.booking import Booking
from ..models.session import ClassSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SessionRepository(BaseRepository[ClassSession]):
    """Repository for scheduled sessions."""

    def __init__(self, db: Session):
        super().__init__(db, ClassSession)

    def get_session(self, session_id: str) -> Optional[ClassSession]:
        """Non-deleted session with its teacher."""
        try:
            return (
                self._build_query()
                .filter(ClassSession.id == session_id, ClassSession.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to load session: {e}") from e

    def lock_session(self, session_id: str) -> Optional[ClassSession]:
        """Re-read a non-deleted session under a write lock."""
        try:
            query = (
                self.db.query(ClassSession)
                .options(lazyload(ClassSession.teacher))
                .filter(ClassSession.id == session_id, ClassSession.deleted_at.is_(None))
            )
            return self._for_update(query).first()
        except SQLAlchemyError as e:
            self.logger.error("Error locking session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to lock session: {e}") from e

    def count_confirmed_bookings(self, session_id: str) -> int:
        """Seats taken: CONFIRMED bookings of the session."""
        try:
            return (
                self.db.query(func.count(Booking.id))
                .filter(
                    Booking.session_id == session_id,
                    Booking.status == BookingStatus.CONFIRMED.value,
                )
                .scalar()
                or 0
            )
        except SQLAlchemyError as e:
            self.logger.error("Error counting bookings for session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to count bookings: {e}") from e

    def is_full(self, session: ClassSession) -> bool:
        return self.count_confirmed_bookings(session.id) >= session.capacity_max

    def list_blocking_sessions(
        self, teacher_id: str, range_start: datetime, range_end: datetime
    ) -> List[ClassSession]:
        """Non-deleted, non-cancelled sessions of a teacher overlapping the range."""
        try:
            return (
                self.db.query(ClassSession)
                .options(lazyload(ClassSession.teacher))
                .filter(
                    ClassSession.teacher_id == teacher_id,
                    ClassSession.deleted_at.is_(None),
                    ClassSession.status != SessionStatus.CANCELLED.value,
                    ClassSession.start_at < range_end,
                    ClassSession.end_at > range_start,
                )
                .order_by(ClassSession.start_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing sessions for teacher %s: %s", teacher_id, e)
            raise RepositoryException(f"Failed to list sessions: {e}") from e

    def get_pending_session_for_student(
        self, teacher_id: str, start_at: datetime, end_at: datetime, student_id: str
    ) -> Optional[ClassSession]:
        """A live session for exactly this window holding the student's PENDING booking."""
        try:
            return (
                self.db.query(ClassSession)
                .join(Booking, Booking.session_id == ClassSession.id)
                .filter(
                    ClassSession.teacher_id == teacher_id,
                    ClassSession.start_at == start_at,
                    ClassSession.end_at == end_at,
                    ClassSession.deleted_at.is_(None),
                    ClassSession.status == SessionStatus.SCHEDULED.value,
                    Booking.student_id == student_id,
                    Booking.status == BookingStatus.PENDING.value,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error looking up pending session for student %s: %s", student_id, e)
            raise RepositoryException(f"Failed to load session: {e}") from e
