# backend/tutoring_core/services/availability_service.py
"""
Teacher availability service.

Validates that a teacher can take a session in a given window and previews
the free windows of a teacher's calendar.

Rejections are reported for the first failing check, in this order:
not found > inactive > blackout > no availability > conflict.
"""

from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc, window_minutes
from ..core.enums import AvailabilityKind
from ..core.exceptions import (
    BookingConflictException,
    NotFoundException,
    RepositoryException,
    ValidationException,
)
from ..models.availability import TeacherAvailability, sunday_based_weekday
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import AvailabilityValidationResult, BookableWindow
from .base import BaseService

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]

DATABASE_ERROR_MESSAGE = "Failed to validate session due to a database error."


def merge_intervals(intervals: Sequence[Interval]) -> List[Interval]:
    """Sort and merge overlapping or touching intervals."""
    if not intervals:
        return []
    ordered = sorted(intervals, key=lambda interval: interval[0])
    merged = [ordered[0]]
    for start, end in ordered[1:]:
        current_start, current_end = merged[-1]
        if start <= current_end:
            merged[-1] = (current_start, max(current_end, end))
        else:
            merged.append((start, end))
    return merged


def subtract_intervals(bases: Sequence[Interval], cuts: Sequence[Interval]) -> List[Interval]:
    """Remove every cut from the bases; returns merged, non-empty pieces."""
    if not bases:
        return []
    if not cuts:
        return merge_intervals(bases)

    merged_cuts = merge_intervals(cuts)
    out: List[Interval] = []
    for base_start, base_end in merge_intervals(bases):
        segments = [(base_start, base_end)]
        for cut_start, cut_end in merged_cuts:
            pieces = []
            for start, end in segments:
                if end <= cut_start or start >= cut_end:
                    pieces.append((start, end))
                    continue
                if start < cut_start:
                    pieces.append((start, cut_start))
                if end > cut_end:
                    pieces.append((cut_end, end))
            segments = [piece for piece in pieces if piece[1] > piece[0]]
            if not segments:
                break
        out.extend(segments)
    return merge_intervals(out)


def _minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


class AvailabilityService(BaseService):
    """
    Service answering "can this teacher take this window?".

    The validation itself is a single read-only query; it does not lock.
    Booking paths re-run the conflict predicate inside their own write
    transaction to close the race with concurrent session creation.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_availability_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)

    def _reject(self, reason: str, exc: Exception, teacher_id: str) -> Exception:
        prometheus_metrics.inc_availability_rejection(reason)
        self.logger.info(
            "Availability rejected for teacher %s: %s",
            teacher_id,
            reason,
            extra={"teacher_id": teacher_id, "reason": reason},
        )
        return exc

    @BaseService.measure_operation("validate_availability")
    def validate_availability(
        self,
        teacher_id: str,
        start_at: datetime,
        end_at: datetime,
        student_id: Optional[str] = None,
    ) -> AvailabilityValidationResult:
        """
        Check a teacher/window pair against availability, blackouts and sessions.

        Args:
            teacher_id: Teacher to book
            start_at: Window start (naive values are taken as UTC)
            end_at: Window end
            student_id: Requesting student; lets a retry pass over the
                student's own PENDING booking for this window

        Returns:
            AvailabilityValidationResult with ``valid=True``

        Raises:
            NotFoundException: Teacher does not exist
            ValidationException: Inactive teacher, blackout, no availability,
                malformed window or storage failure
            BookingConflictException: Another session occupies the window
        """
        start_at = ensure_utc(start_at)
        end_at = ensure_utc(end_at)
        if end_at <= start_at:
            raise ValidationException("Session end must be after its start.")

        start_minute = _minute_of_day(start_at)
        duration_minutes = window_minutes(start_at, end_at)

        try:
            evaluation = self.repository.evaluate_window(
                teacher_id,
                start_at,
                end_at,
                weekday=sunday_based_weekday(start_at),
                start_minute=start_minute,
                end_minute=start_minute + duration_minutes,
                student_id=student_id,
            )
        except (RepositoryException, SQLAlchemyError) as e:
            self.logger.error("Availability query failed for teacher %s: %s", teacher_id, e)
            raise ValidationException(DATABASE_ERROR_MESSAGE) from e

        if evaluation is None:
            raise self._reject(
                "not_found", NotFoundException(f"Teacher {teacher_id} not found."), teacher_id
            )
        if not evaluation.is_active:
            raise self._reject(
                "inactive", ValidationException(f"Teacher {teacher_id} is inactive."), teacher_id
            )
        if evaluation.has_blackout:
            raise self._reject(
                "blackout",
                ValidationException(f"Teacher {teacher_id} has a blackout during the requested time."),
                teacher_id,
            )
        if not evaluation.has_availability:
            raise self._reject(
                "no_availability",
                ValidationException(f"Teacher {teacher_id} is not available during the requested time."),
                teacher_id,
            )
        if evaluation.has_conflict:
            raise self._reject(
                "conflict",
                BookingConflictException(
                    f"Teacher {teacher_id} has a conflicting booking during the requested time.",
                    details={"teacher_id": teacher_id},
                ),
                teacher_id,
            )

        return AvailabilityValidationResult(teacher_id=teacher_id)

    @BaseService.measure_operation("get_bookable_windows")
    def get_bookable_windows(
        self, teacher_id: str, range_start: datetime, range_end: datetime
    ) -> List[BookableWindow]:
        """
        Free windows of a teacher between ``range_start`` and ``range_end``.

        Union of ONE_OFF and RECURRING rules, minus BLACKOUT rules, minus
        live sessions. Inactive teachers have no bookable windows.
        """
        range_start = ensure_utc(range_start)
        range_end = ensure_utc(range_end)
        if range_end <= range_start:
            raise ValidationException("Range end must be after its start.")

        teacher = self.repository.get_teacher(teacher_id)
        if teacher is None:
            raise NotFoundException(f"Teacher {teacher_id} not found.")
        if not teacher.is_active:
            return []

        rules = self.repository.list_active_rules(teacher_id)
        bases: List[Interval] = []
        cuts: List[Interval] = []
        for rule in rules:
            if rule.kind == AvailabilityKind.RECURRING.value:
                bases.extend(self._expand_recurring(rule, range_start, range_end))
            elif rule.start_at is not None and rule.end_at is not None:
                interval = (ensure_utc(rule.start_at), ensure_utc(rule.end_at))
                if rule.kind == AvailabilityKind.BLACKOUT.value:
                    cuts.append(interval)
                else:
                    bases.append(interval)

        for session in self.session_repository.list_blocking_sessions(teacher_id, range_start, range_end):
            cuts.append((ensure_utc(session.start_at), ensure_utc(session.end_at)))

        clipped = [
            (max(start, range_start), min(end, range_end))
            for start, end in bases
            if end > range_start and start < range_end
        ]
        return [
            BookableWindow(start_at=start, end_at=end)
            for start, end in subtract_intervals(clipped, cuts)
        ]

    @staticmethod
    def _expand_recurring(
        rule: TeacherAvailability, range_start: datetime, range_end: datetime
    ) -> List[Interval]:
        """Concrete occurrences of a weekly rule that touch the range."""
        occurrences: List[Interval] = []
        day: date = range_start.date()
        while day <= range_end.date():
            midnight = datetime.combine(day, time(0), tzinfo=timezone.utc)
            if sunday_based_weekday(midnight) == rule.weekday:
                start = midnight + timedelta(minutes=rule.start_time_minutes or 0)
                end = midnight + timedelta(minutes=rule.end_time_minutes or 0)
                if end > range_start and start < range_end:
                    occurrences.append((start, end))
            day += timedelta(days=1)
        return occurrences
