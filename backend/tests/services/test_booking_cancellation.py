# backend/tests/services/test_booking_cancellation.py
"""
Tests for BookingService.cancel_booking: refunds, session release and the
waitlist follow-up.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from tutoring_core.core.config import Settings
from tutoring_core.core.enums import BookingStatus, ServiceType, SessionStatus
from tutoring_core.core.exceptions import NotFoundException, ValidationException
from tutoring_core.schemas.package import BookingData
from tutoring_core.services.availability_service import AvailabilityService
from tutoring_core.services.booking_service import BookingService
from tutoring_core.services.package_service import PackageService
from tutoring_core.services.waitlist_service import WaitlistService

MONDAY_10 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
STUDENT = "student-a"


@pytest.fixture
def booking_service(db, clock, dispatcher, test_settings):
    return BookingService(db, clock=clock, settings=test_settings, dispatcher=dispatcher)


@pytest.fixture
def package_service(db, clock, dispatcher, test_settings, booking_service):
    return PackageService(
        db, clock=clock, settings=test_settings, dispatcher=dispatcher, booking_service=booking_service
    )


@pytest.fixture
def paid_group_booking(factory, teacher, package_service):
    session = factory.session(teacher, type=ServiceType.GROUP, start_at=MONDAY_10, capacity_max=1)
    package = factory.package(STUDENT, [{"service_type": ServiceType.GROUP, "credits": 2}])
    result = package_service.use_package_for_session(STUDENT, package.id, session_id=session.id)
    return package, result


def remaining(package_service, package_id):
    summary = next(s for s in package_service.get_package_history(STUDENT) if s.id == package_id)
    return summary.total_remaining


class TestRefunds:
    def test_cancel_before_deadline_restores_credit(
        self, booking_service, package_service, paid_group_booking, dispatcher
    ):
        package, result = paid_group_booking
        assert remaining(package_service, package.id) == 1

        cancelled = booking_service.cancel_booking(result.booking.id, STUDENT, reason="sick")

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "sick"
        assert result.use.deleted_at is not None
        assert remaining(package_service, package.id) == 2
        event = [e for e in dispatcher.events if e.event_type == "booking.cancelled"][0]
        assert event.credits_refunded == 1

    def test_cancel_inside_deadline_keeps_debit(
        self, booking_service, package_service, paid_group_booking, clock
    ):
        package, result = paid_group_booking
        clock.now = MONDAY_10 - timedelta(hours=2)

        booking_service.cancel_booking(result.booking.id, STUDENT)

        assert result.use.deleted_at is None
        assert remaining(package_service, package.id) == 1

    def test_refunds_can_be_disabled(self, db, clock, dispatcher, package_service, paid_group_booking):
        package, result = paid_group_booking
        service = BookingService(
            db,
            clock=clock,
            settings=Settings(environment="test", refund_credits_on_cancel=False),
            dispatcher=dispatcher,
        )

        service.cancel_booking(result.booking.id, STUDENT)

        assert remaining(package_service, package.id) == 1

    def test_rebooking_after_refund_reuses_booking_row(
        self, booking_service, package_service, paid_group_booking
    ):
        package, result = paid_group_booking
        booking_service.cancel_booking(result.booking.id, STUDENT)

        again = package_service.use_package_for_session(STUDENT, package.id, session_id=result.session.id)

        assert again.booking.id == result.booking.id
        assert again.booking.status == BookingStatus.CONFIRMED.value
        assert again.booking.package_use_id == again.use.id

    def test_rebooking_after_late_cancel_detaches_old_debit(
        self, booking_service, package_service, paid_group_booking, clock
    ):
        package, result = paid_group_booking
        clock.now = MONDAY_10 - timedelta(hours=2)
        booking_service.cancel_booking(result.booking.id, STUDENT)

        again = package_service.use_package_for_session(STUDENT, package.id, session_id=result.session.id)

        assert again.booking.id == result.booking.id
        assert again.use.id != result.use.id
        assert again.use.booking_id == again.booking.id
        assert result.use.booking_id is None
        assert result.use.deleted_at is None
        assert remaining(package_service, package.id) == 0


class TestCancellationRules:
    def test_unknown_or_foreign_booking(self, booking_service, paid_group_booking):
        _, result = paid_group_booking

        with pytest.raises(NotFoundException, match="Booking not found"):
            booking_service.cancel_booking(result.booking.id, "student-b")
        with pytest.raises(NotFoundException):
            booking_service.cancel_booking("missing", STUDENT)

    def test_double_cancel(self, booking_service, paid_group_booking):
        _, result = paid_group_booking
        booking_service.cancel_booking(result.booking.id, STUDENT)

        with pytest.raises(ValidationException, match="already cancelled"):
            booking_service.cancel_booking(result.booking.id, STUDENT)

    def test_private_cancellation_frees_the_window(self, db, clock, factory, teacher, package_service, booking_service):
        package = factory.package(STUDENT, [{"service_type": ServiceType.PRIVATE, "credits": 2}])
        data = BookingData(teacher_id=teacher.id, start_at=MONDAY_10, end_at=MONDAY_10 + timedelta(hours=1))
        result = package_service.use_package_for_session(STUDENT, package.id, booking_data=data)

        booking_service.cancel_booking(result.booking.id, STUDENT)

        assert result.session.status == SessionStatus.CANCELLED.value
        validation = AvailabilityService(db, clock=clock).validate_availability(
            teacher.id, MONDAY_10, MONDAY_10 + timedelta(hours=1), student_id="student-b"
        )
        assert validation.valid is True


class TestWaitlistFollowUp:
    def test_freed_group_seat_is_offered_to_head(
        self, db, clock, dispatcher, test_settings, booking_service, paid_group_booking
    ):
        _, result = paid_group_booking
        waitlist = WaitlistService(db, clock=clock, settings=test_settings, dispatcher=dispatcher)
        head = waitlist.join_waitlist(result.session.id, "student-b")

        booking_service.cancel_booking(result.booking.id, STUDENT)

        assert head.notified_at == clock.now
        assert dispatcher.events[-1].event_type == "waitlist.seat_offered"

    def test_follow_up_failure_does_not_undo_cancellation(self, booking_service, paid_group_booking):
        _, result = paid_group_booking

        with patch.object(
            WaitlistService,
            "handle_booking_cancellation",
            side_effect=NotFoundException("Session not found"),
        ):
            cancelled = booking_service.cancel_booking(result.booking.id, STUDENT)

        assert cancelled.status == BookingStatus.CANCELLED.value
