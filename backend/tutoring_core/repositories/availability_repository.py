# backend/tutoring_core/repositories/availability_repository.py
"""
Availability Repository

Evaluates whether a teacher can take a session in one round trip. The
query returns the teacher row plus three independent flags:

- has_blackout: an active BLACKOUT rule overlaps the window (bounds inclusive)
- has_availability: an active ONE_OFF rule contains the window, or an active
  RECURRING rule on the window's weekday contains its minute range
- has_conflict: a live session of the teacher strictly overlaps the window

All values are bound parameters.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import and_, exists, not_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased
from sqlalchemy.sql.elements import ColumnElement

from ..core.enums import AvailabilityKind, BookingStatus, SessionStatus
from ..core.exceptions import RepositoryException
from ..models.availability import TeacherAvailability
from ..models.booking import Booking
from ..models.session import ClassSession
from ..models.teacher import Teacher
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowEvaluation:
    """Raw flags for one teacher/window evaluation."""

    teacher_id: str
    is_active: bool
    has_blackout: bool
    has_availability: bool
    has_conflict: bool


class AvailabilityRepository(BaseRepository[TeacherAvailability]):
    """Repository for teacher availability rules and window checks."""

    def __init__(self, db: Session):
        super().__init__(db, TeacherAvailability)

    def get_teacher(self, teacher_id: str) -> Optional[Teacher]:
        try:
            return (
                self.db.query(Teacher)
                .filter(Teacher.id == teacher_id, Teacher.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading teacher %s: %s", teacher_id, e)
            raise RepositoryException(f"Failed to load teacher: {e}") from e

    def lock_teacher(self, teacher_id: str) -> Optional[Teacher]:
        """
        Re-read the teacher row under a write lock.

        Private bookings for one teacher serialize on this row, so the
        conflict re-check sees sessions committed by a competing booking.
        """
        try:
            query = self.db.query(Teacher).filter(
                Teacher.id == teacher_id, Teacher.deleted_at.is_(None)
            )
            return self._for_update(query, Teacher).first()
        except SQLAlchemyError as e:
            self.logger.error("Error locking teacher %s: %s", teacher_id, e)
            raise RepositoryException(f"Failed to lock teacher: {e}") from e

    def evaluate_window(
        self,
        teacher_id: str,
        start_at: datetime,
        end_at: datetime,
        *,
        weekday: int,
        start_minute: int,
        end_minute: int,
        student_id: Optional[str] = None,
    ) -> Optional[WindowEvaluation]:
        """
        Evaluate all predicates for a window in a single query.

        Returns None when the teacher does not exist (or is deleted).
        ``weekday`` is 0 = Sunday; minutes are minute-of-day of the window
        start and end, computed by the caller from ``start_at``.
        """
        stmt = select(
            Teacher.id,
            Teacher.is_active,
            self._blackout_clause(teacher_id, start_at, end_at).label("has_blackout"),
            self._availability_clause(
                teacher_id, start_at, end_at, weekday, start_minute, end_minute
            ).label("has_availability"),
            self.conflict_clause(teacher_id, start_at, end_at, student_id=student_id).label(
                "has_conflict"
            ),
        ).where(Teacher.id == teacher_id, Teacher.deleted_at.is_(None))

        try:
            row = self.db.execute(stmt).first()
        except SQLAlchemyError as e:
            self.logger.error("Error evaluating window for teacher %s: %s", teacher_id, e)
            raise RepositoryException(f"Failed to evaluate availability: {e}") from e

        if row is None:
            return None
        return WindowEvaluation(
            teacher_id=row.id,
            is_active=bool(row.is_active),
            has_blackout=bool(row.has_blackout),
            has_availability=bool(row.has_availability),
            has_conflict=bool(row.has_conflict),
        )

    def has_conflict(
        self,
        teacher_id: str,
        start_at: datetime,
        end_at: datetime,
        *,
        student_id: Optional[str] = None,
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        """Conflict predicate alone, for re-checking inside a write transaction."""
        clause = self.conflict_clause(
            teacher_id,
            start_at,
            end_at,
            student_id=student_id,
            exclude_session_id=exclude_session_id,
        )
        try:
            return bool(self.db.execute(select(clause)).scalar())
        except SQLAlchemyError as e:
            self.logger.error("Error checking conflicts for teacher %s: %s", teacher_id, e)
            raise RepositoryException(f"Failed to check conflicts: {e}") from e

    def list_active_rules(self, teacher_id: str) -> List[TeacherAvailability]:
        """Active, non-deleted rules of every kind."""
        try:
            return (
                self._build_query()
                .filter(
                    TeacherAvailability.teacher_id == teacher_id,
                    TeacherAvailability.is_active.is_(True),
                    TeacherAvailability.deleted_at.is_(None),
                )
                .order_by(TeacherAvailability.kind, TeacherAvailability.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing rules for teacher %s: %s", teacher_id, e)
            raise RepositoryException(f"Failed to list availability rules: {e}") from e

    # Predicates

    @staticmethod
    def _live_rule(teacher_id: str, kind: AvailabilityKind) -> ColumnElement[bool]:
        return and_(
            TeacherAvailability.teacher_id == teacher_id,
            TeacherAvailability.kind == kind.value,
            TeacherAvailability.is_active.is_(True),
            TeacherAvailability.deleted_at.is_(None),
        )

    def _blackout_clause(self, teacher_id: str, start_at: datetime, end_at: datetime):
        return exists().where(
            self._live_rule(teacher_id, AvailabilityKind.BLACKOUT),
            TeacherAvailability.start_at <= end_at,
            TeacherAvailability.end_at >= start_at,
        )

    def _availability_clause(
        self,
        teacher_id: str,
        start_at: datetime,
        end_at: datetime,
        weekday: int,
        start_minute: int,
        end_minute: int,
    ):
        one_off = and_(
            self._live_rule(teacher_id, AvailabilityKind.ONE_OFF),
            TeacherAvailability.start_at <= start_at,
            TeacherAvailability.end_at >= end_at,
        )
        recurring = and_(
            self._live_rule(teacher_id, AvailabilityKind.RECURRING),
            TeacherAvailability.weekday == weekday,
            TeacherAvailability.start_time_minutes <= start_minute,
            TeacherAvailability.end_time_minutes >= end_minute,
        )
        return exists().where(or_(one_off, recurring))

    @staticmethod
    def conflict_clause(
        teacher_id: str,
        start_at: datetime,
        end_at: datetime,
        *,
        student_id: Optional[str] = None,
        exclude_session_id: Optional[str] = None,
    ):
        """
        EXISTS clause for a live session overlapping ``[start_at, end_at)``.

        With ``student_id`` a session is ignored when its bookings consist of
        exactly that student's PENDING booking and nothing else.
        """
        existing = aliased(ClassSession)
        conditions = [
            existing.teacher_id == teacher_id,
            existing.deleted_at.is_(None),
            existing.status != SessionStatus.CANCELLED.value,
            existing.start_at < end_at,
            existing.end_at > start_at,
        ]
        if exclude_session_id is not None:
            conditions.append(existing.id != exclude_session_id)
        if student_id is not None:
            own_pending = exists().where(
                Booking.session_id == existing.id,
                Booking.student_id == student_id,
                Booking.status == BookingStatus.PENDING.value,
            )
            anything_else = exists().where(
                Booking.session_id == existing.id,
                or_(
                    Booking.student_id != student_id,
                    Booking.status != BookingStatus.PENDING.value,
                ),
            )
            conditions.append(not_(and_(own_pending, not_(anything_else))))
        return exists().where(*conditions)
