# backend/tests/services/test_availability_validator.py
"""
Tests for AvailabilityService.validate_availability and bookable windows.

The ``teacher`` fixture is available Mondays 10:00-11:00 UTC
(RECURRING, weekday=1, minutes 600-660).
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from tutoring_core.core.enums import BookingStatus, ServiceType, SessionStatus
from tutoring_core.core.exceptions import (
    BookingConflictException,
    NotFoundException,
    RepositoryException,
    ValidationException,
)
from tutoring_core.services.availability_service import (
    DATABASE_ERROR_MESSAGE,
    AvailabilityService,
    merge_intervals,
    subtract_intervals,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


MONDAY_1030 = utc(2024, 1, 15, 10, 30)
MONDAY_1100 = utc(2024, 1, 15, 11, 0)


@pytest.fixture
def service(db, clock):
    return AvailabilityService(db, clock=clock)


class TestRecurringAvailability:
    def test_window_inside_monday_rule_is_valid(self, service, teacher):
        result = service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100)

        assert result.valid is True
        assert result.teacher_id == teacher.id

    def test_same_window_on_tuesday_is_rejected(self, service, teacher):
        with pytest.raises(ValidationException) as exc_info:
            service.validate_availability(
                teacher.id, utc(2024, 1, 16, 10, 30), utc(2024, 1, 16, 11, 0)
            )
        assert str(exc_info.value) == f"Teacher {teacher.id} is not available during the requested time."

    def test_monday_outside_minute_range_is_rejected(self, service, teacher):
        with pytest.raises(ValidationException) as exc_info:
            service.validate_availability(teacher.id, utc(2024, 1, 15, 9, 0), utc(2024, 1, 15, 9, 30))
        assert "is not available" in str(exc_info.value)

    def test_window_running_past_rule_end_is_rejected(self, service, teacher):
        with pytest.raises(ValidationException, match="is not available"):
            service.validate_availability(teacher.id, MONDAY_1030, utc(2024, 1, 15, 11, 15))

    def test_naive_datetimes_are_treated_as_utc(self, service, teacher):
        result = service.validate_availability(
            teacher.id, MONDAY_1030.replace(tzinfo=None), MONDAY_1100.replace(tzinfo=None)
        )
        assert result.valid is True

    def test_inactive_rule_is_ignored(self, service, factory):
        teacher = factory.teacher()
        factory.recurring(teacher, weekday=1, start_minutes=600, end_minutes=660, is_active=False)

        with pytest.raises(ValidationException, match="is not available"):
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100)


class TestOneOffAvailability:
    def test_one_off_must_contain_the_window(self, service, factory):
        teacher = factory.teacher()
        factory.one_off(teacher, utc(2024, 1, 16, 14, 0), utc(2024, 1, 16, 16, 0))

        assert service.validate_availability(
            teacher.id, utc(2024, 1, 16, 14, 30), utc(2024, 1, 16, 15, 30)
        ).valid

        with pytest.raises(ValidationException, match="is not available"):
            service.validate_availability(teacher.id, utc(2024, 1, 16, 15, 30), utc(2024, 1, 16, 16, 30))


class TestRejectionOrdering:
    def test_inactive_wins_over_blackout(self, service, factory):
        teacher = factory.teacher(is_active=False)
        factory.recurring(teacher, weekday=1, start_minutes=600, end_minutes=660)
        factory.blackout(teacher, MONDAY_1030, utc(2024, 1, 15, 10, 45))

        with pytest.raises(ValidationException) as exc_info:
            service.validate_availability(teacher.id, MONDAY_1030, utc(2024, 1, 15, 10, 45))

        assert "is inactive" in str(exc_info.value)
        assert "blackout" not in str(exc_info.value)

    def test_blackout_wins_over_conflict(self, service, factory, teacher):
        factory.blackout(teacher, MONDAY_1030, MONDAY_1100)
        factory.session(teacher, start_at=MONDAY_1030, minutes=30)

        with pytest.raises(ValidationException) as exc_info:
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100)

        assert str(exc_info.value) == f"Teacher {teacher.id} has a blackout during the requested time."

    def test_no_availability_wins_over_conflict(self, service, factory, teacher):
        factory.session(teacher, start_at=utc(2024, 1, 16, 10, 0), minutes=60)

        with pytest.raises(ValidationException) as exc_info:
            service.validate_availability(teacher.id, utc(2024, 1, 16, 10, 0), utc(2024, 1, 16, 11, 0))

        assert not isinstance(exc_info.value, BookingConflictException)
        assert "is not available" in str(exc_info.value)

    def test_unknown_teacher(self, service):
        with pytest.raises(NotFoundException) as exc_info:
            service.validate_availability("01HZZZZZZZZZZZZZZZZZZZZZZZ", MONDAY_1030, MONDAY_1100)
        assert str(exc_info.value) == "Teacher 01HZZZZZZZZZZZZZZZZZZZZZZZ not found."

    def test_empty_window_is_rejected(self, service, teacher):
        with pytest.raises(ValidationException, match="end must be after"):
            service.validate_availability(teacher.id, MONDAY_1100, MONDAY_1030)


class TestBlackouts:
    def test_partial_overlap_blocks(self, service, factory, teacher):
        factory.blackout(teacher, utc(2024, 1, 15, 10, 45), utc(2024, 1, 15, 12, 0))

        with pytest.raises(ValidationException, match="has a blackout"):
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100)

    def test_touching_blackout_blocks_because_bounds_are_inclusive(self, service, factory, teacher):
        factory.blackout(teacher, utc(2024, 1, 15, 10, 0), MONDAY_1030)

        with pytest.raises(ValidationException, match="has a blackout"):
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100)

    def test_blackout_on_another_day_does_not_block(self, service, factory, teacher):
        factory.blackout(teacher, utc(2024, 1, 16, 0, 0), utc(2024, 1, 17, 0, 0))

        assert service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100).valid


class TestConflicts:
    def test_overlapping_session_conflicts(self, service, factory, teacher):
        factory.session(teacher, start_at=utc(2024, 1, 15, 10, 0), minutes=45)

        with pytest.raises(BookingConflictException) as exc_info:
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100)

        assert str(exc_info.value) == (
            f"Teacher {teacher.id} has a conflicting booking during the requested time."
        )
        assert exc_info.value.status_code == 409

    def test_touching_session_does_not_conflict(self, service, factory, teacher):
        factory.session(teacher, start_at=utc(2024, 1, 15, 10, 0), minutes=30)

        assert service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100).valid

    def test_cancelled_and_deleted_sessions_do_not_block(self, service, factory, db, teacher):
        factory.session(teacher, start_at=MONDAY_1030, minutes=30, status=SessionStatus.CANCELLED)
        deleted = factory.session(teacher, start_at=MONDAY_1030, minutes=30)
        deleted.deleted_at = utc(2024, 1, 9)
        db.commit()

        assert service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100).valid

    def test_other_teachers_sessions_do_not_block(self, service, factory, teacher):
        factory.session(factory.teacher(), start_at=MONDAY_1030, minutes=30)

        assert service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100).valid


class TestOwnPendingRetry:
    @pytest.fixture
    def pending_session(self, factory, teacher):
        session = factory.session(teacher, type=ServiceType.PRIVATE, start_at=MONDAY_1030, minutes=30)
        factory.booking(session, "student-a", status=BookingStatus.PENDING)
        return session

    def test_student_passes_over_own_pending_booking(self, service, teacher, pending_session):
        result = service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100, student_id="student-a")
        assert result.valid is True

    def test_anonymous_request_still_conflicts(self, service, teacher, pending_session):
        with pytest.raises(BookingConflictException):
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100)

    def test_other_student_still_conflicts(self, service, teacher, pending_session):
        with pytest.raises(BookingConflictException):
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100, student_id="student-b")

    @pytest.mark.parametrize(
        "status", [BookingStatus.CONFIRMED, BookingStatus.INVITED, BookingStatus.CANCELLED]
    )
    def test_exemption_only_covers_pending(self, service, factory, teacher, status):
        session = factory.session(teacher, type=ServiceType.PRIVATE, start_at=MONDAY_1030, minutes=30)
        factory.booking(session, "student-a", status=status)

        with pytest.raises(BookingConflictException):
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100, student_id="student-a")

    def test_exemption_requires_sole_booking(self, service, factory, teacher, pending_session):
        factory.booking(pending_session, "student-b", status=BookingStatus.PENDING)

        with pytest.raises(BookingConflictException):
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100, student_id="student-a")

    def test_session_without_bookings_still_conflicts(self, service, factory, teacher):
        factory.session(teacher, type=ServiceType.PRIVATE, start_at=MONDAY_1030, minutes=30)

        with pytest.raises(BookingConflictException):
            service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100, student_id="student-a")


class TestStorageFailures:
    def test_repository_error_becomes_validation_error(self, service, teacher):
        with patch.object(
            service.repository, "evaluate_window", side_effect=RepositoryException("connection reset")
        ):
            with pytest.raises(ValidationException) as exc_info:
                service.validate_availability(teacher.id, MONDAY_1030, MONDAY_1100)

        assert str(exc_info.value) == DATABASE_ERROR_MESSAGE
        assert "connection reset" not in str(exc_info.value)


class TestBookableWindows:
    DAY_START = utc(2024, 1, 15, 0, 0)
    DAY_END = utc(2024, 1, 16, 0, 0)

    def test_recurring_rule_expands_to_concrete_window(self, service, teacher):
        windows = service.get_bookable_windows(teacher.id, self.DAY_START, self.DAY_END)

        assert [(w.start_at, w.end_at) for w in windows] == [(utc(2024, 1, 15, 10, 0), MONDAY_1100)]
        assert windows[0].duration_minutes == 60

    def test_sessions_and_blackouts_are_cut_out(self, service, factory, teacher):
        factory.one_off(teacher, utc(2024, 1, 15, 14, 0), utc(2024, 1, 15, 16, 0))
        factory.session(teacher, start_at=utc(2024, 1, 15, 10, 0), minutes=15)
        factory.blackout(teacher, utc(2024, 1, 15, 15, 0), utc(2024, 1, 15, 15, 30))

        windows = service.get_bookable_windows(teacher.id, self.DAY_START, self.DAY_END)

        assert [(w.start_at, w.end_at) for w in windows] == [
            (utc(2024, 1, 15, 10, 15), MONDAY_1100),
            (utc(2024, 1, 15, 14, 0), utc(2024, 1, 15, 15, 0)),
            (utc(2024, 1, 15, 15, 30), utc(2024, 1, 15, 16, 0)),
        ]

    def test_range_clips_windows(self, service, teacher):
        windows = service.get_bookable_windows(teacher.id, MONDAY_1030, self.DAY_END)
        assert [(w.start_at, w.end_at) for w in windows] == [(MONDAY_1030, MONDAY_1100)]

    def test_week_range_only_yields_mondays(self, service, teacher):
        windows = service.get_bookable_windows(teacher.id, self.DAY_START, self.DAY_START + timedelta(days=14))
        assert [w.start_at.date().isoformat() for w in windows] == ["2024-01-15", "2024-01-22"]

    def test_inactive_teacher_has_no_windows(self, service, factory):
        teacher = factory.teacher(is_active=False)
        factory.recurring(teacher, weekday=1, start_minutes=600, end_minutes=660)

        assert service.get_bookable_windows(teacher.id, self.DAY_START, self.DAY_END) == []


class TestIntervalMath:
    def test_merge_joins_touching_intervals(self):
        a, b, c = utc(2024, 1, 1, 9), utc(2024, 1, 1, 10), utc(2024, 1, 1, 11)
        assert merge_intervals([(b, c), (a, b)]) == [(a, c)]

    def test_subtract_splits_base(self):
        a, b, c, d = (utc(2024, 1, 1, h) for h in (9, 10, 11, 12))
        assert subtract_intervals([(a, d)], [(b, c)]) == [(a, b), (c, d)]
        assert subtract_intervals([(b, c)], [(a, d)]) == []
