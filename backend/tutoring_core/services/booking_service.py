# backend/tutoring_core/services/booking_service.py
"""
Booking Service

Seat bookkeeping shared by the ledger and the waitlist, and booking
cancellation. A student has at most one booking row per session: a
PENDING, INVITED or CANCELLED row is re-used when the seat is confirmed.
"""

from datetime import timedelta
import logging
from typing import TYPE_CHECKING, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc
from ..core.config import Settings, settings as default_settings
from ..core.enums import BookingStatus, ServiceType, SessionStatus
from ..core.exceptions import (
    ConflictException,
    IntegrityConflictError,
    NotFoundException,
    ValidationException,
)
from ..events.booking_events import BookingCancelled
from ..models.booking import Booking
from ..models.session import ClassSession
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_dispatcher import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    dispatch_safely,
)

if TYPE_CHECKING:
    from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)

REUSABLE_STATUSES = {
    BookingStatus.PENDING.value,
    BookingStatus.INVITED.value,
    BookingStatus.CANCELLED.value,
}

ALREADY_BOOKED = "Student already has a booking for this session"


class BookingService(BaseService):
    """Service for confirming and cancelling seats."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        waitlist_service: Optional["WaitlistService"] = None,
    ):
        super().__init__(db, clock)
        self.settings = settings or default_settings
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.package_repository = RepositoryFactory.create_package_repository(db)
        self._waitlist_service = waitlist_service

    @property
    def waitlist_service(self) -> "WaitlistService":
        if self._waitlist_service is None:
            from .waitlist_service import WaitlistService

            self._waitlist_service = WaitlistService(
                self.db, clock=self.clock, settings=self.settings, dispatcher=self.dispatcher
            )
        return self._waitlist_service

    def confirm_seat(
        self,
        session: ClassSession,
        student_id: str,
        *,
        student_package_id: Optional[str] = None,
        package_use_id: Optional[str] = None,
        credits_cost: Optional[int] = None,
    ) -> Booking:
        """
        Create or re-activate the student's CONFIRMED booking for ``session``.

        Runs inside the caller's transaction and only flushes. Capacity is
        the caller's responsibility.

        Raises:
            ConflictException: The student already holds a live seat
        """
        now = self.clock()
        existing = self.booking_repository.get_by_session_and_student(session.id, student_id)

        if existing is not None:
            if existing.status not in REUSABLE_STATUSES:
                raise ConflictException(
                    ALREADY_BOOKED,
                    details={"session_id": session.id, "booking_id": existing.id},
                )
            self._detach_previous_use(existing, package_use_id)
            existing.status = BookingStatus.CONFIRMED.value
            existing.accepted_at = now
            existing.cancelled_at = None
            existing.cancellation_reason = None
            existing.student_package_id = student_package_id
            existing.package_use_id = package_use_id
            existing.credits_cost = credits_cost
            self.booking_repository.flush()
            return existing

        try:
            return self.booking_repository.create(
                session_id=session.id,
                student_id=student_id,
                status=BookingStatus.CONFIRMED.value,
                accepted_at=now,
                student_package_id=student_package_id,
                package_use_id=package_use_id,
                credits_cost=credits_cost,
            )
        except IntegrityConflictError as e:
            raise ConflictException(ALREADY_BOOKED, details={"session_id": session.id}) from e

    def _detach_previous_use(self, booking: Booking, package_use_id: Optional[str]) -> None:
        # The earlier debit stays on the ledger but stops pointing at this row
        previous_id = booking.package_use_id
        if previous_id is None or previous_id == package_use_id:
            return
        previous = self.package_repository.get_use(previous_id)
        if previous is not None and previous.booking_id == booking.id:
            previous.booking_id = None

    def _refund_eligible(self, booking: Booking, session: ClassSession) -> bool:
        if not self.settings.refund_credits_on_cancel or not booking.package_use_id:
            return False
        deadline = ensure_utc(session.start_at) - timedelta(hours=self.settings.cancellation_deadline_hours)
        return self.clock() <= deadline

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, student_id: str, reason: Optional[str] = None) -> Booking:
        """
        Cancel a student's booking.

        Package-paid bookings cancelled before the deadline get their ledger
        entry voided, which restores the balance. A freed GROUP seat is
        offered to the head of the waitlist after commit.

        Raises:
            NotFoundException: No such booking for this student
            ValidationException: Booking already cancelled
        """
        booking = self.booking_repository.get_for_student(booking_id, student_id)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        if booking.is_cancelled:
            raise ValidationException("Booking is already cancelled")

        session = booking.session
        held_seat = booking.status == BookingStatus.CONFIRMED.value
        now = self.clock()
        refunded = 0

        with self.transaction():
            if self._refund_eligible(booking, session):
                use = self.package_repository.get_use(booking.package_use_id)
                if use is not None and use.deleted_at is None:
                    self.package_repository.void_use(use, now)
                    refunded = use.credits_used

            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_at = now
            booking.cancellation_reason = reason
            if session.type == ServiceType.PRIVATE.value:
                session.status = SessionStatus.CANCELLED.value
            self.booking_repository.flush()

        self.logger.info(
            "Booking %s cancelled (refunded %s credits)",
            booking.id,
            refunded,
            extra={"booking_id": booking.id, "session_id": session.id, "credits_refunded": refunded},
        )
        dispatch_safely(
            self.dispatcher,
            BookingCancelled(
                booking_id=booking.id,
                session_id=session.id,
                student_id=student_id,
                cancelled_at=now,
                credits_refunded=refunded,
            ),
        )

        if held_seat and session.type == ServiceType.GROUP.value:
            try:
                self.waitlist_service.handle_booking_cancellation(session.id)
            except (NotFoundException, ValidationException) as e:
                self.logger.error("Waitlist follow-up failed for session %s: %s", session.id, e)

        return booking
